#Purpose: The delivery backend REST "adapter/client".
#Sole responsibility: talk to the REST backend via HTTP and return normalized outputs.
#Encapsulates backend-specific details:
#bearer authentication
#URL construction (orders by status, available-cooked, verify-delivery, tracking config)
#timeouts and error classification (connectivity vs server message vs bad payload)
#parsing response JSON into Order objects
#It should not contain caching, session state or acceptance rules.


from dotenv import load_dotenv
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import requests
from urllib.parse import urlsplit

from orders.models import Order, OrderStatus, orders_from_payloads

# Read backend URLs from environment
# Example in .env:
# DELIVERY_API_BASE_URL=https://example-host/api/v1
# DELIVERY_SOCKET_URL=https://example-host
load_dotenv()
BASE_URL = os.getenv("DELIVERY_API_BASE_URL")
SOCKET_URL = os.getenv("DELIVERY_SOCKET_URL")
HTTP_TIMEOUT = float(os.getenv("DELIVERY_HTTP_TIMEOUT", "10"))

CONNECTIVITY_MESSAGE = "Unable to connect to server. Please check your internet connection."
GENERIC_MESSAGE = "Something went wrong. Please try again later."


class DeliveryApiError(Exception):
    """Raised when the backend answers with a non-success payload."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NetworkError(DeliveryApiError):
    """The backend could not be reached (connection refused, DNS, timeout)."""
    pass


class ResponseFormatError(DeliveryApiError):
    """The backend answered but the body is not the JSON shape we expect."""
    pass


def friendly_error_message(exc: Exception) -> str:
    """
    User-facing text for a failed REST call.
    """
    if isinstance(exc, NetworkError):
        return CONNECTIVITY_MESSAGE
    if isinstance(exc, ResponseFormatError):
        return GENERIC_MESSAGE
    if isinstance(exc, DeliveryApiError) and exc.message:
        return exc.message
    return GENERIC_MESSAGE


def default_socket_url(base_url: Optional[str] = None) -> Optional[str]:
    """
    DELIVERY_SOCKET_URL if set, otherwise the scheme and host of the REST base URL.
    """
    if SOCKET_URL:
        return SOCKET_URL
    base = base_url or BASE_URL
    if not base:
        return None
    parts = urlsplit(base)
    return f"{parts.scheme}://{parts.netloc}"


def server_message(data: Any, default: str) -> str:
    """
    The backend reports errors as message, error (string or {message}) or errors[0].msg.
    """
    if not isinstance(data, dict):
        return default
    error = data.get("error")
    if isinstance(error, str) and error:
        return error
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if data.get("message"):
        return str(data["message"])
    errors = data.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict) and errors[0].get("msg"):
        return str(errors[0]["msg"])
    return default


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    message: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class TrackingConfig:
    database_url: str
    send_interval_seconds: Optional[float] = None
    raw: Optional[Dict[str, Any]] = None


class DeliveryApiClient:
    """
    Delivery backend Adapter / Client

    Sole responsibility:
    - Talk to the REST backend via HTTP
    - Attach the bearer credential
    - Return normalized outputs (Order objects, VerificationResult, TrackingConfig)

    """
    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = HTTP_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or BASE_URL or "").rstrip("/")
        self.token = token
        self.timeout = timeout #the time to wait for a response before giving up
        self.session = session or requests.Session()

        if not self.base_url:
            raise ValueError("Delivery API base URL not set. Please set DELIVERY_API_BASE_URL in the .env file.")

        #----------------
        # Internal helper methods for headers, requests and error handling
        #----------------
    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, **kwargs) -> Any:
        """
        Perform the call and return (response, parsed JSON).
        Connectivity problems become NetworkError, unparsable bodies ResponseFormatError.
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise NetworkError(CONNECTIVITY_MESSAGE) from exc
        except requests.RequestException as exc:
            raise DeliveryApiError(str(exc) or GENERIC_MESSAGE) from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise ResponseFormatError(
                f"Failed to parse server response: {exc}", response.status_code
            ) from exc

        return response, data

    def _successful_data(self, method: str, path: str, default_error: str, **kwargs) -> Any:
        response, data = self._request(method, path, **kwargs)
        if not response.ok or not isinstance(data, dict) or data.get("status") != "success":
            raise DeliveryApiError(server_message(data, default_error), response.status_code)
        return data

        #----------------
        # Public methods for orders, verification and tracking config
        #----------------
    def fetch_orders_by_status(self, status: OrderStatus) -> List[Order]:
        """
        GET orders/get-orders-by-DeliveryMan?status=<status>

        Returns:
            orders assigned to this courier with the given status.
        """
        data = self._successful_data(
            "GET",
            "orders/get-orders-by-DeliveryMan",
            "Failed to fetch orders",
            params={"status": status.value},
        )
        return orders_from_payloads(data.get("data"), default_status=status)

    def fetch_available_orders(self) -> List[Order]:
        """
        GET orders/available-cooked -> offers any courier can accept.
        """
        data = self._successful_data("GET", "orders/available-cooked", "Failed to fetch available orders")
        return orders_from_payloads(data.get("data"), default_status=OrderStatus.COOKED)

    def fetch_delivery_history(self) -> List[Order]:
        """
        Completed orders for this courier. The payload must carry a data list.
        """
        data = self._successful_data(
            "GET",
            "orders/get-orders-by-DeliveryMan",
            "Failed to fetch orders",
            params={"status": OrderStatus.COMPLETED.value},
        )
        if not isinstance(data.get("data"), list):
            raise ResponseFormatError("Invalid response format: missing data array")
        return orders_from_payloads(data["data"], default_status=OrderStatus.COMPLETED)

    def verify_delivery(self, order_id: str, verification_code: str) -> VerificationResult:
        """
        POST orders/verify-delivery {order_id, verification_code}

        A rejected code is a normal result (success=False with the backend's
        message verbatim); only transport and parse problems raise.
        """
        response, data = self._request(
            "POST",
            "orders/verify-delivery",
            json={"order_id": order_id, "verification_code": verification_code},
        )
        if response.ok and isinstance(data, dict) and data.get("status") == "success":
            return VerificationResult(
                success=True,
                message=data.get("message"),
                data=data.get("data"),
            )
        return VerificationResult(success=False, error=server_message(data, "Please try again."))

    def fetch_tracking_config(self) -> TrackingConfig:
        """
        GET config/getFirebaseConfig -> realtime store URL and the telemetry interval.
        """
        data = self._successful_data("GET", "config/getFirebaseConfig", "Failed to load tracking config")
        payload = data.get("data") or {}
        config = payload.get("firebaseConfig") if isinstance(payload, dict) else None
        if not isinstance(config, dict):
            raise ResponseFormatError("Tracking configuration missing in response")

        database_url = config.get("databaseURL")
        if not database_url:
            raise ResponseFormatError("Missing required tracking config field: databaseURL")

        send_interval = None
        try:
            send_interval = float(config.get("sendDurationInSeconds"))
        except (TypeError, ValueError):
            send_interval = None
        if send_interval is not None and not send_interval > 0:
            send_interval = None

        return TrackingConfig(database_url=database_url, send_interval_seconds=send_interval, raw=config)
