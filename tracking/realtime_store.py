#Purpose: The realtime store "adapter/client".
#Sole responsibility: write tracking records to the Firebase Realtime Database REST API.
#Encapsulates store-specific details:
#key-path addressing (deliveryGuys/{id}, deliveryOrders/{id}, .../locationHistory)
#PATCH (update), POST (push, append-only), PUT (set)
#stripping UNSET fields before transmission (None is kept and sent as null)
#classifying failures into a WriteResult instead of raising
#It should not build tracking payloads or decide when to write.

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

import requests

logger = logging.getLogger(__name__)


class _Unset:
    """
    Marker for "field not provided". Stripped before a write; None is not.
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


class WriteResult(Enum):
    OK = "ok"
    DENIED = "denied"   # permission rules rejected the write; tracking visibility only
    FAILED = "failed"   # anything else: network, server error, bad payload

    @property
    def ok(self) -> bool:
        return self is WriteResult.OK


def strip_unset(payload: Any) -> Any:
    """
    Recursively drop UNSET values from mappings. Empty nested mappings are
    kept. Lists are passed through as-is (coordinate arrays).
    """
    if not isinstance(payload, Mapping):
        return payload

    cleaned: Dict[str, Any] = {}
    for key, value in payload.items():
        if value is UNSET:
            continue
        cleaned[key] = strip_unset(value)
    return cleaned


def _is_permission_denied(response: requests.Response) -> bool:
    if response.status_code in (401, 403):
        return True
    try:
        body = response.json()
    except ValueError:
        return False
    error = body.get("error") if isinstance(body, dict) else None
    return isinstance(error, str) and "permission" in error.lower() and "denied" in error.lower()


class RealtimeStore:
    """
    Firebase Realtime Database over REST.

    Writes are best-effort: every method returns a WriteResult and never raises.
    The async variants run the blocking HTTP call off the event loop.
    """

    def __init__(
        self,
        database_url: str,
        auth_token: Optional[str] = None,
        timeout: float = 5,
        session: Optional[requests.Session] = None,
    ):
        if not database_url:
            raise ValueError("Realtime store database URL is required.")
        self.database_url = database_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout #the time to wait for the store before giving up
        self.session = session or requests.Session()

        #----------------
        # Internal helpers
        #----------------
    def url_for(self, path: str) -> str:
        return f"{self.database_url}/{path.strip('/')}.json"

    def _params(self) -> Dict[str, str]:
        return {"auth": self.auth_token} if self.auth_token else {}

    def _write(self, method: str, path: str, payload: Mapping[str, Any]) -> WriteResult:
        body = strip_unset(payload)
        try:
            response = self.session.request(
                method,
                self.url_for(path),
                json=body,
                params=self._params(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("realtime store %s %s failed: %s", method, path, exc)
            return WriteResult.FAILED

        if response.ok:
            return WriteResult.OK

        if _is_permission_denied(response):
            # store rules not configured for this courier; tracking only
            logger.debug("realtime store %s %s permission denied", method, path)
            return WriteResult.DENIED

        logger.warning(
            "realtime store %s %s returned HTTP %s", method, path, response.status_code
        )
        return WriteResult.FAILED

        #----------------
        # Public methods
        #----------------
    def update_sync(self, path: str, payload: Mapping[str, Any]) -> WriteResult:
        """Merge fields into the record at path (PATCH)."""
        return self._write("PATCH", path, payload)

    def push_sync(self, path: str, payload: Mapping[str, Any]) -> WriteResult:
        """Append a child with a generated key (POST)."""
        return self._write("POST", path, payload)

    def set_sync(self, path: str, payload: Mapping[str, Any]) -> WriteResult:
        """Replace the record at path (PUT)."""
        return self._write("PUT", path, payload)

    async def update(self, path: str, payload: Mapping[str, Any]) -> WriteResult:
        return await asyncio.to_thread(self.update_sync, path, payload)

    async def push(self, path: str, payload: Mapping[str, Any]) -> WriteResult:
        return await asyncio.to_thread(self.push_sync, path, payload)

    async def set(self, path: str, payload: Mapping[str, Any]) -> WriteResult:
        return await asyncio.to_thread(self.set_sync, path, payload)


def courier_path(courier_id: str) -> str:
    return f"deliveryGuys/{courier_id}"


def courier_history_path(courier_id: str) -> str:
    return f"deliveryGuys/{courier_id}/locationHistory"


def order_path(order_id: str) -> str:
    return f"deliveryOrders/{order_id}"


def order_history_path(order_id: str) -> str:
    return f"deliveryOrders/{order_id}/locationHistory"


def utc_now_iso() -> str:
    """Record timestamp format used across tracking records (ISO 8601, UTC, ms)."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
