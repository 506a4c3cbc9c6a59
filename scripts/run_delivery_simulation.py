"""
Offline end-to-end run of one courier session.

Everything remote is faked in this file (REST backend, dispatch channel,
realtime store HTTP), so the run needs no network:
go online -> offer O1 arrives -> accept -> drive towards the customer
(telemetry + proximity alert) -> picked up -> verify -> history/earnings.
"""

import asyncio
import logging
from typing import Any, Dict, List

from api.client import TrackingConfig, VerificationResult
from dispatch.dispatcher import DeliveryCoordinator
from drivers.models import CourierProfile, PositionSample
from drivers.policy import CourierPolicy
from orders.models import Order, OrderStatus
from tracking.realtime_store import RealtimeStore

RESTAURANT = (9.0108, 38.7613)
CUSTOMER = (9.0301, 38.7520)

OFFER = {
    "orderId": "64f0c0ffee00000000O1",
    "orderCode": "ORD-O1",
    "restaurantName": "Simulated Kitchen",
    "restaurantLocation": {"coordinates": [RESTAURANT[1], RESTAURANT[0]]},
    "destinationLocation": {"coordinates": [CUSTOMER[1], CUSTOMER[0]]},
    "deliveryFee": {"$numberDecimal": "50"},
    "tip": "10",
}


class MockDeliveryApi:
    """The REST backend, in memory."""

    def __init__(self):
        self.token = None
        self.completed: List[Dict[str, Any]] = []
        self.verification_codes = {OFFER["orderId"]: "4321"}

    def fetch_orders_by_status(self, status: OrderStatus) -> List[Order]:
        return []

    def fetch_available_orders(self) -> List[Order]:
        return []

    def fetch_delivery_history(self) -> List[Order]:
        return [Order.from_payload(raw, default_status=OrderStatus.COMPLETED) for raw in self.completed]

    def verify_delivery(self, order_id: str, code: str) -> VerificationResult:
        if self.verification_codes.get(order_id) != code:
            return VerificationResult(success=False, error="Invalid verification code")
        self.completed.append({**OFFER, "status": "Completed"})
        return VerificationResult(success=True, message="Delivery verified successfully")

    def fetch_tracking_config(self) -> TrackingConfig:
        return TrackingConfig(database_url="https://simulated-rtdb.example", send_interval_seconds=1)


class MockSocketClient:
    """The dispatch backend side of the Socket.IO channel."""

    def __init__(self):
        self.handlers: Dict[str, Any] = {}
        self.connected = False

    def on(self, event, handler):
        self.handlers[event] = handler

    def fire(self, event, *args):
        handler = self.handlers.get(event)
        if handler:
            handler(*args)

    async def connect(self, url, auth=None, transports=None):
        self.connected = True
        self.fire("connect")

    async def disconnect(self):
        if self.connected:
            self.connected = False
            self.fire("disconnect")

    async def emit(self, event, data, callback=None):
        if event == "acceptOrder" and callback:
            ack = {"status": "success", "message": "Order accepted", "data": {**OFFER, "status": "Accepted"}}
            asyncio.get_running_loop().call_later(0.05, callback, ack)


class MockResponse:
    status_code = 200
    ok = True

    def json(self):
        return {"name": "-generated"}


class MockRealtimeSession:
    """Counts realtime store writes instead of sending them."""

    def __init__(self):
        self.writes: Dict[str, int] = {}

    def request(self, method, url, json=None, params=None, timeout=None):
        self.writes[method] = self.writes.get(method, 0) + 1
        return MockResponse()


def interpolate(start, end, fraction: float) -> PositionSample:
    return PositionSample.new(
        start[0] + (end[0] - start[0]) * fraction,
        start[1] + (end[1] - start[1]) * fraction,
        accuracy=5,
    )


async def run_simulation():
    print("=== STARTING OFFLINE DELIVERY SIMULATION ===")

    api = MockDeliveryApi()
    socket_client = MockSocketClient()
    http = MockRealtimeSession()

    # short intervals so the run takes seconds, not minutes
    policy = CourierPolicy(
        status_send_intervals={
            OrderStatus.ACCEPTED: 0.5,
            OrderStatus.PICKED_UP: 0.25,
            OrderStatus.IN_TRANSIT: 0.25,
            OrderStatus.DELIVERED: 0,
        }
    )
    coordinator = DeliveryCoordinator(
        api,
        policy=policy,
        channel_factory=lambda: socket_client,
        socket_url="https://simulated-dispatch.example",
        realtime_factory=lambda config: RealtimeStore(config.database_url, session=http),
    )

    # 1. Sign in and go online
    coordinator.sign_in(CourierProfile(id="courier-1", first_name="Sim", last_name="Rider"), "token")
    await coordinator.go_online()
    print(f"Online: {coordinator.state.online}, connected: {coordinator.state.connected}")

    # 2. Start location tracking at the restaurant
    coordinator.geolocation.publish(PositionSample.new(*RESTAURANT, accuracy=5))
    coordinator.start_location_tracking()

    # 3. Dispatch backend pushes an offer
    socket_client.fire("deliveryMessage", OFFER)
    offer = coordinator.state.current_offer
    print(f"Offer received: {offer.order_code} (earnings {offer.total_earnings:.2f})")

    # 4. Accept it
    accepted = await coordinator.accept_order(offer.order_id)
    print(f"Accepted: {accepted}, telemetry every {coordinator.telemetry.interval}s")

    # 5. Pick up and drive to the customer
    await coordinator.update_status(offer.order_id, OrderStatus.PICKED_UP)
    print(f"Picked up, telemetry every {coordinator.telemetry.interval}s")
    for step in range(1, 11):
        coordinator.geolocation.publish(interpolate(RESTAURANT, CUSTOMER, step / 10))
        await asyncio.sleep(0.3)

    # 6. Verify with the customer's code
    wrong = await coordinator.verify(offer.order_id, "0000")
    print(f"Wrong code: success={wrong.success} ({wrong.error})")
    result = await coordinator.verify(offer.order_id, "4321")
    print(f"Verification: success={result.success}, active orders left: {len(coordinator.state.active_orders)}")

    # 7. Earnings from the refreshed history
    summary = coordinator.earnings()
    print(f"History: {len(coordinator.state.delivery_history)} deliveries, total earnings {summary.total_earnings:.2f}")
    print(f"Realtime writes: {http.writes}")

    await coordinator.logout()
    print("=== SIMULATION COMPLETE ===")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    asyncio.run(run_simulation())
