"""
Full courier session against in-memory fakes:
online -> offer O1 (fee 50, tip 10) -> accept -> telemetry at 10s ->
PickedUp -> telemetry at 5s -> verify -> active set empty -> history refetched.
"""

import asyncio

from dispatch.dispatcher import DeliveryCoordinator
from drivers.models import PositionSample
from orders.cache import CacheKey
from orders.models import Order, OrderStatus
from tracking.realtime_store import RealtimeStore

from conftest import MockSocketClient

OFFER = {
    "orderId": "O1",
    "orderCode": "ORD-O1",
    "restaurantLocation": {"coordinates": [38.76, 9.02]},
    "destinationLocation": {"coordinates": [38.75, 9.0]},
    "deliveryFee": 50,
    "tip": 10,
}


def test_offer_to_verified_delivery(courier, delivery_api, notifier, http_session):
    socket_client = MockSocketClient(ack={"status": "success", "data": {**OFFER, "status": "Accepted"}})
    coordinator = DeliveryCoordinator(
        delivery_api,
        notifier=notifier,
        channel_factory=lambda: socket_client,
        socket_url="https://dispatch.example",
        realtime_factory=lambda config: RealtimeStore(config.database_url, session=http_session),
    )
    delivery_api.verification_codes["O1"] = "4321"
    coordinator.sign_in(courier, "jwt")

    async def scenario():
        assert await coordinator.go_online()
        assert coordinator.state.connected

        coordinator.geolocation.publish(PositionSample.new(9.02, 38.76, accuracy=4))
        coordinator.start_location_tracking()

        # history is cached before the delivery happens
        assert await coordinator.refresh_history() == []

        socket_client.fire("deliveryMessage", OFFER)
        assert coordinator.state.current_offer.total_earnings == 60
        assert notifier.offers[0].order_id == "O1"

        accepted = await asyncio.wait_for(coordinator.accept_order("O1"), timeout=10)
        assert accepted
        assert coordinator.state.active_order_ids == ["O1"]
        assert coordinator.telemetry.running
        assert coordinator.telemetry.interval == 10

        assert await coordinator.update_status("O1", OrderStatus.PICKED_UP)
        assert coordinator.telemetry.interval == 5

        report = await coordinator.send_location_now()
        assert report is not None and not report.failed

        # the backend now reports O1 as completed
        delivery_api.history = [
            Order(order_id="O1", order_code="ORD-O1", delivery_fee=50, tip=10, status=OrderStatus.COMPLETED)
        ]
        history_fetches = delivery_api.calls.count("history")

        result = await coordinator.verify("O1", "4321")
        assert result.success

        assert coordinator.state.active_orders == ()
        assert not coordinator.telemetry.running
        assert delivery_api.calls.count("history") == history_fetches + 1
        assert coordinator.cache.is_fresh(CacheKey.DELIVERY_HISTORY)

        history = coordinator.state.delivery_history
        assert [order.order_id for order in history] == ["O1"]
        assert history[0].total_earnings == 60
        assert coordinator.earnings().total_earnings == 60

        await coordinator.logout()

    asyncio.run(scenario())

    statuses = [
        call["json"].get("status")
        for call in http_session.calls
        if call["method"] == "PATCH" and call["url"].endswith("deliveryOrders/O1.json")
    ]
    assert "PickedUp" in statuses
    assert statuses[-1] == "Delivered"
    assert ("Delivery Verified!", "Delivery verified successfully") in notifier.notices
