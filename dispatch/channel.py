"""
Purpose: Own the single live dispatch channel (Socket.IO) for the session.
What it does:
- connect(): open the channel with the current credential (only when online)
- disconnect(): tear it down; safe to call when there is nothing to tear down
- reconnect(): user-triggered retry, never raises
- translate inbound events into session transitions:
    deliveryMessage / order:cooked  -> new offer (+ attention signal)
    order:accepted                  -> offer claimed by someone, drop it
    connect_error / errorMessage    -> stored socket error
    disconnect                      -> connected=False, telemetry halted
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import socketio
from socketio.exceptions import ConnectionError as ChannelConnectionError

from api.client import default_socket_url
from orders.models import Order, OrderStatus
from tracking.alerts import Notifier

from .acceptance import NotConnectedError
from .state_machines.session_state import (
    SessionStore,
    channel_connected,
    channel_disconnected,
    channel_failed,
    notice_posted,
    offer_received,
    offer_removed,
    socket_error_cleared,
)

logger = logging.getLogger(__name__)

OFFER_EVENTS = ("deliveryMessage", "order:cooked")
CLAIMED_EVENT = "order:accepted"
ERROR_EVENTS = ("connect_error", "errorMessage")


def _default_channel_factory() -> socketio.AsyncClient:
    return socketio.AsyncClient(reconnection=True)


def _error_text(error: Any) -> str:
    if isinstance(error, str):
        return error
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return str(error) if error is not None else "Connection error"


class ChannelManager:
    """
    channel_factory builds an unconnected client with the python-socketio
    AsyncClient surface (on / connect / disconnect / emit / connected).
    on_drop runs whenever the channel goes away (telemetry halt); on_connect
    runs on every successful connect, including library reconnects.
    """

    def __init__(
        self,
        store: SessionStore,
        notifier: Notifier,
        url: Optional[str] = None,
        channel_factory: Optional[Callable[[], Any]] = None,
        on_drop: Optional[Callable[[], None]] = None,
        on_connect: Optional[Callable[[], None]] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.url = url or default_socket_url()
        self._factory = channel_factory or _default_channel_factory
        self._on_drop = on_drop
        self._on_connect = on_connect
        self._client: Optional[Any] = None

    @property
    def connected(self) -> bool:
        return self._client is not None and bool(self._client.connected)

    @property
    def client(self) -> Optional[Any]:
        return self._client

        #----------------
        # Lifecycle
        #----------------
    async def connect(self) -> bool:
        session = self.store.state
        if not session.online or not session.has_credential:
            logger.info("not connecting: offline or no credential")
            return False
        if self.connected:
            return True
        if not self.url:
            self.store.dispatch(channel_failed, "Dispatch channel URL not configured")
            return False

        if self._client is None:
            self._client = self._factory()
            self._register(self._client)

        if self.store.state.socket_error:
            self.store.dispatch(socket_error_cleared)
        try:
            await self._client.connect(
                self.url,
                auth={"token": session.token},
                transports=["websocket"],
            )
        except ChannelConnectionError as exc:
            # a connect_error event may already have stored the server's reason
            if self.store.state.socket_error:
                logger.warning("dispatch channel connect failed: %s", exc)
            else:
                self._handle_error(exc.args[0] if exc.args else str(exc))
            return False

        logger.info("dispatch channel connected")
        return True

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            try:
                await client.disconnect()
            except Exception:
                logger.exception("error while closing dispatch channel")
        if self.store.state.connected:
            self.store.dispatch(channel_disconnected)
        self._dropped()

    async def reconnect(self) -> bool:
        """
        Retry after a failure. Reuses the existing client if there is one
        (connect() builds it otherwise).
        Failures end up in session.socket_error.
        """
        try:
            if self.store.state.socket_error:
                self.store.dispatch(socket_error_cleared)
            return await self.connect()
        except Exception as exc:
            logger.exception("reconnect failed")
            self.store.dispatch(channel_failed, str(exc) or "Reconnect failed")
            return False

    async def emit(self, event: str, data: Any, callback: Optional[Callable[..., Any]] = None) -> None:
        if not self.connected:
            raise NotConnectedError("Socket not connected to server. Please go ONLINE to accept orders.")
        await self._client.emit(event, data, callback=callback)

        #----------------
        # Inbound events
        #----------------
    def _register(self, client: Any) -> None:
        client.on("connect", self._handle_connect)
        client.on("disconnect", self._handle_disconnect)
        for event in ERROR_EVENTS:
            client.on(event, self._handle_error)
        for event in OFFER_EVENTS:
            client.on(event, self._handle_offer)
        client.on(CLAIMED_EVENT, self._handle_claimed)

    def _handle_connect(self) -> None:
        self.store.dispatch(channel_connected)
        if self._on_connect is not None:
            self._on_connect()

    def _handle_disconnect(self, *reason: Any) -> None:
        logger.info("dispatch channel dropped %s", reason[0] if reason else "")
        self.store.dispatch(channel_disconnected)
        self._dropped()

    def _handle_error(self, error: Any = None) -> None:
        message = _error_text(error)
        logger.warning("dispatch channel error: %s", message)
        self.store.dispatch(channel_failed, message)
        if "Authentication error" in message:
            self.store.dispatch(notice_posted, "Authentication Error", "Please log in again")

    def _handle_offer(self, payload: Any) -> None:
        order = Order.from_payload(payload, default_status=OrderStatus.COOKED) if isinstance(payload, dict) else None
        if order is None:
            logger.warning("offer without order id ignored")
            return
        self.store.dispatch(offer_received, order)
        self.notifier.new_offer(order)

    def _handle_claimed(self, payload: Any) -> None:
        order_id = None
        if isinstance(payload, dict):
            order_id = payload.get("orderId") or payload.get("_id")
        if order_id:
            self.store.dispatch(offer_removed, str(order_id))

    def _dropped(self) -> None:
        if self._on_drop is not None:
            self._on_drop()
