import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest
from socketio.exceptions import ConnectionError as ChannelConnectionError

from api.client import DeliveryApiError, TrackingConfig, VerificationResult
from drivers.models import CourierProfile
from orders.models import Order, OrderStatus
from tracking.realtime_store import RealtimeStore


class MockResponse:
    def __init__(self, status_code: int = 200, body: Any = None, invalid_json: bool = False):
        self.status_code = status_code
        self._body = body if body is not None else {}
        self._invalid_json = invalid_json

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self):
        if self._invalid_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._body


class MockHttpSession:
    """
    Stands in for requests.Session. Responses are served by `responder`
    (method, url) -> MockResponse, or raised when it returns an exception.
    """

    def __init__(self, responder: Optional[Callable[[str, str], Any]] = None):
        self.responder = responder or (lambda method, url: MockResponse(200, {"name": "-key"}))
        self.calls: List[Dict[str, Any]] = []

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        result = self.responder(method, url)
        if isinstance(result, Exception):
            raise result
        return result

    def calls_to(self, method: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["method"] == method]


class MockSocketClient:
    """
    Same surface as socketio.AsyncClient. `ack` decides the acknowledgement for
    an emitted event: a dict is delivered after `ack_delay`, None means never.
    A failed connect fires connect_error with `fail_with` and then raises
    `raise_with` (defaults to the same text), like the library does.
    """

    def __init__(
        self,
        ack: Any = None,
        ack_delay: float = 0.01,
        fail_with: Optional[str] = None,
        raise_with: Optional[str] = None,
    ):
        self.handlers: Dict[str, Callable] = {}
        self.connected = False
        self.ack = ack
        self.ack_delay = ack_delay
        self.fail_with = fail_with
        self.raise_with = raise_with
        self.emitted: List[tuple] = []
        self.connect_kwargs: Dict[str, Any] = {}

    def on(self, event, handler):
        self.handlers[event] = handler

    def fire(self, event, *args):
        handler = self.handlers.get(event)
        if handler:
            handler(*args)

    async def connect(self, url, auth=None, transports=None):
        self.connect_kwargs = {"url": url, "auth": auth, "transports": transports}
        if self.fail_with:
            self.fire("connect_error", {"message": self.fail_with})
        if self.fail_with or self.raise_with:
            raise ChannelConnectionError(self.raise_with or self.fail_with)
        self.connected = True
        self.fire("connect")

    async def disconnect(self):
        if self.connected:
            self.connected = False
            self.fire("disconnect", "client disconnect")

    async def emit(self, event, data, callback=None):
        self.emitted.append((event, data))
        response = self.ack(data) if callable(self.ack) else self.ack
        if callback is not None and response is not None:
            asyncio.get_running_loop().call_later(self.ack_delay, callback, response)


class MockDeliveryApi:
    """In-memory REST backend with the DeliveryApiClient surface."""

    def __init__(self):
        self.token = None
        self.orders_by_status: Dict[OrderStatus, List[Order]] = {}
        self.available: List[Order] = []
        self.history: List[Order] = []
        self.verification_codes: Dict[str, str] = {}
        self.fail_with: Optional[DeliveryApiError] = None
        self.tracking_config = TrackingConfig(database_url="https://rtdb.example", send_interval_seconds=3)
        self.calls: List[str] = []

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_with is not None:
            raise self.fail_with

    def fetch_orders_by_status(self, status: OrderStatus) -> List[Order]:
        self._check(f"orders:{status.value}")
        return list(self.orders_by_status.get(status, []))

    def fetch_available_orders(self) -> List[Order]:
        self._check("available")
        return list(self.available)

    def fetch_delivery_history(self) -> List[Order]:
        self._check("history")
        return list(self.history)

    def verify_delivery(self, order_id: str, code: str) -> VerificationResult:
        self._check("verify")
        if self.verification_codes.get(order_id) != code:
            return VerificationResult(success=False, error="Invalid verification code")
        return VerificationResult(success=True, message="Delivery verified successfully")

    def fetch_tracking_config(self) -> TrackingConfig:
        self._check("tracking-config")
        return self.tracking_config


class RecordingNotifier:
    def __init__(self):
        self.offers: List[Order] = []
        self.approaching: List[tuple] = []
        self.notices: List[tuple] = []
        self.alarm_stops = 0

    def new_offer(self, order):
        self.offers.append(order)

    def approaching_destination(self, order, distance_m):
        self.approaching.append((order.order_id, distance_m))

    def stop_alarm(self):
        self.alarm_stops += 1

    def notice(self, title, message):
        self.notices.append((title, message))


@pytest.fixture
def courier():
    return CourierProfile(id="courier-1", first_name="Abebe", last_name="Kebede", phone="0911000000")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def http_session():
    return MockHttpSession()


@pytest.fixture
def realtime(http_session):
    return RealtimeStore("https://rtdb.example", session=http_session)


@pytest.fixture
def delivery_api():
    return MockDeliveryApi()
