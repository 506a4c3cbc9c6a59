import asyncio
from dataclasses import replace

import pytest

from api.client import CONNECTIVITY_MESSAGE, GENERIC_MESSAGE, DeliveryApiClient, NetworkError
from dispatch.dispatcher import DeliveryCoordinator
from drivers.models import PositionSample
from drivers.policy import default_courier_policy
from orders.models import LatLng, Order, OrderStatus
from tracking.realtime_store import RealtimeStore

from conftest import MockHttpSession, MockResponse, MockSocketClient

OFFER = {
    "orderId": "O1",
    "orderCode": "ORD-O1",
    "restaurantName": "Kitchen",
    "restaurantLocation": {"coordinates": [38.76, 9.02]},
    "destinationLocation": {"coordinates": [38.75, 9.0]},
    "deliveryFee": {"$numberDecimal": "50"},
    "tip": "10",
}


@pytest.fixture
def socket_client():
    return MockSocketClient(ack={"status": "success", "data": {**OFFER, "status": "Accepted"}})


@pytest.fixture
def coordinator(delivery_api, notifier, socket_client, http_session, courier):
    coordinator = DeliveryCoordinator(
        delivery_api,
        notifier=notifier,
        channel_factory=lambda: socket_client,
        socket_url="https://dispatch.example",
        realtime_factory=lambda config: RealtimeStore(config.database_url, session=http_session),
    )
    coordinator.sign_in(courier, "jwt")
    return coordinator


def test_sign_in_sets_api_token(coordinator, delivery_api):
    assert delivery_api.token == "jwt"
    assert coordinator.state.has_credential


def test_go_online_requires_credential(delivery_api, notifier):
    coordinator = DeliveryCoordinator(delivery_api, notifier=notifier, socket_url="https://dispatch.example")

    assert not asyncio.run(coordinator.go_online())
    assert notifier.notices[-1] == ("Error", "Please log in to go online.")


def test_accept_while_offline_reports_not_connected(coordinator, notifier):
    assert not asyncio.run(coordinator.accept_order("O1"))

    assert notifier.notices[-1][0] == "Error"
    assert "ONLINE" in notifier.notices[-1][1]
    assert coordinator.state.active_orders == ()


def test_accept_primes_tracking_and_initializes_order_record(coordinator, socket_client, http_session, delivery_api):
    async def scenario():
        await coordinator.go_online()
        socket_client.fire("deliveryMessage", OFFER)
        return await coordinator.accept_order("O1")

    assert asyncio.run(scenario())

    session = coordinator.state
    assert session.active_order_ids == ["O1"]
    assert session.pending_offers == ()
    assert session.send_interval_seconds == 3
    assert delivery_api.calls.count("tracking-config") == 1
    assert coordinator.realtime() is not None
    init = http_session.calls[0]
    assert init["url"] == "https://rtdb.example/deliveryOrders/O1.json"
    assert init["json"]["orderCode"] == "ORD-O1"


def test_sparse_ack_is_completed_from_the_offer(coordinator, socket_client):
    socket_client.ack = {"status": "success", "message": "ok"}

    async def scenario():
        await coordinator.go_online()
        socket_client.fire("order:cooked", OFFER)
        return await coordinator.accept_order("O1")

    assert asyncio.run(scenario())

    accepted = coordinator.state.tracked_order
    assert accepted.status is OrderStatus.ACCEPTED
    assert accepted.destination_location == LatLng(lat=9.0, lng=38.75)
    assert accepted.total_earnings == 60
    assert accepted.restaurant_name == "Kitchen"


def test_order_taken_rejection_drops_stale_offer(coordinator, socket_client, notifier):
    socket_client.ack = {"status": "failure", "message": "Order is not available for acceptance"}

    async def scenario():
        await coordinator.go_online()
        socket_client.fire("deliveryMessage", OFFER)
        return await coordinator.accept_order("O1")

    assert not asyncio.run(scenario())
    assert coordinator.state.pending_offers == ()
    assert notifier.notices[-1][0] == "Order No Longer Available"


def test_conflict_rejection_keeps_offer(coordinator, socket_client, notifier):
    socket_client.ack = {"status": "failure", "message": "You already have an active order"}

    async def scenario():
        await coordinator.go_online()
        socket_client.fire("deliveryMessage", OFFER)
        return await coordinator.accept_order("O1")

    assert not asyncio.run(scenario())
    assert [offer.order_id for offer in coordinator.state.pending_offers] == ["O1"]
    assert notifier.notices[-1][0] == "Active Order Conflict"


def test_decline_and_dismiss_offer(coordinator, socket_client, notifier):
    async def scenario():
        await coordinator.go_online()
        socket_client.fire("deliveryMessage", OFFER)
        socket_client.fire("deliveryMessage", {**OFFER, "orderId": "O2"})

    asyncio.run(scenario())

    coordinator.dismiss_offer()
    assert coordinator.state.current_offer is None
    coordinator.decline_offer("O1")
    assert [offer.order_id for offer in coordinator.state.pending_offers] == ["O2"]
    assert notifier.alarm_stops == 2


def test_refresh_failure_keeps_previous_list(coordinator, delivery_api):
    delivery_api.available = [Order(order_id="A1", order_code="ORD-A1")]

    async def scenario():
        await coordinator.refresh_available_orders()
        delivery_api.fail_with = NetworkError("refused")
        return await coordinator.refresh_available_orders(force_refresh=True)

    orders = asyncio.run(scenario())

    assert [order.order_id for order in orders] == ["A1"]
    assert coordinator.state.orders_error == CONNECTIVITY_MESSAGE


def test_active_orders_merge_cooked_and_delivering(coordinator, delivery_api, http_session):
    delivery_api.orders_by_status = {
        OrderStatus.COOKED: [Order(order_id="C1", order_code="ORD-C1")],
        OrderStatus.DELIVERING: [Order(order_id="D1", order_code="ORD-D1", status=OrderStatus.DELIVERING)],
    }

    orders = asyncio.run(coordinator.refresh_active_orders())

    assert sorted(order.order_id for order in orders) == ["C1", "D1"]
    assert coordinator.state.active_orders_error is None
    put_calls = http_session.calls_to("PUT")
    assert [call["url"] for call in put_calls] == ["https://rtdb.example/deliveryOrders/D1.json"]


def test_cached_list_is_served_without_refetch(coordinator, delivery_api):
    async def scenario():
        await coordinator.refresh_history()
        await coordinator.refresh_history()
        await coordinator.refresh_history(force_refresh=True)

    asyncio.run(scenario())

    assert delivery_api.calls.count("history") == 2


def test_update_status_for_untracked_order_is_reported(coordinator, notifier):
    assert not asyncio.run(coordinator.update_status("nope", OrderStatus.PICKED_UP))
    assert notifier.notices[-1][0] == "Error"


def test_send_location_now_needs_a_position(coordinator, notifier):
    assert asyncio.run(coordinator.send_location_now()) is None
    assert notifier.notices[-1] == ("Location Error", "Current location not available")


def test_location_tracking_follows_geolocation_feed(coordinator):
    coordinator.start_location_tracking()
    assert not coordinator.state.location_tracking

    coordinator.geolocation.publish(PositionSample.new(9.0, 38.75, accuracy=3))
    assert coordinator.state.location_tracking
    assert coordinator.state.current_position.accuracy == 3

    coordinator.stop_location_tracking()
    assert not coordinator.state.location_tracking
    assert coordinator.geolocation.subscriber_count == 0


def test_location_unavailable_records_error(coordinator):
    coordinator.start_location_tracking()

    coordinator.location_unavailable("Location permission denied")

    assert coordinator.state.location_error == "Location permission denied"
    assert coordinator.geolocation.subscriber_count == 0


def test_go_offline_disconnects_channel(coordinator, socket_client):
    async def scenario():
        await coordinator.go_online()
        await coordinator.go_offline()

    asyncio.run(scenario())

    assert not coordinator.state.online
    assert not coordinator.state.connected
    assert not socket_client.connected


def test_logout_tears_everything_down(coordinator, socket_client, delivery_api, notifier):
    async def scenario():
        await coordinator.go_online()
        coordinator.geolocation.publish(PositionSample.new(9.0, 38.75))
        coordinator.start_location_tracking()
        socket_client.fire("deliveryMessage", OFFER)
        await coordinator.accept_order("O1")
        assert coordinator.telemetry.running
        await coordinator.logout()

    asyncio.run(scenario())

    assert coordinator.state.courier is None
    assert coordinator.state.active_orders == ()
    assert not coordinator.telemetry.running
    assert not socket_client.connected
    assert coordinator.geolocation.subscriber_count == 0
    assert coordinator.realtime() is None
    assert delivery_api.token is None
    assert notifier.alarm_stops >= 1


def test_unparsable_backend_reply_shows_generic_message(notifier, courier):
    session = MockHttpSession(lambda method, url: MockResponse(502, invalid_json=True))
    api = DeliveryApiClient(base_url="https://api.example/api/v1", session=session)
    coordinator = DeliveryCoordinator(api, notifier=notifier, socket_url="https://dispatch.example")
    coordinator.sign_in(courier, "jwt")

    async def scenario():
        history = await coordinator.refresh_history()
        result = await coordinator.verify("O1", "4321")
        return history, result

    history, result = asyncio.run(scenario())

    assert history == []
    assert coordinator.state.history_error == GENERIC_MESSAGE
    assert not result.success
    assert result.error == GENERIC_MESSAGE
    assert notifier.notices[-1] == ("Error", GENERIC_MESSAGE)


def test_telemetry_resumes_after_channel_reconnect(coordinator, socket_client):
    async def scenario():
        await coordinator.go_online()
        coordinator.geolocation.publish(PositionSample.new(9.0, 38.75))
        coordinator.start_location_tracking()
        socket_client.fire("deliveryMessage", OFFER)
        await coordinator.accept_order("O1")
        before_drop = coordinator.telemetry.running

        socket_client.connected = False
        socket_client.fire("disconnect", "transport close")
        after_drop = coordinator.telemetry.running

        # the library reconnects on its own and fires connect again
        socket_client.connected = True
        socket_client.fire("connect")
        after_reconnect = coordinator.telemetry.running, coordinator.telemetry.interval

        await coordinator.logout()
        return before_drop, after_drop, after_reconnect

    assert asyncio.run(scenario()) == (True, False, (True, 10))
    assert coordinator.state.socket_error is None


def test_going_offline_lets_pending_acceptance_time_out(delivery_api, notifier, courier):
    silent_client = MockSocketClient(ack=None)
    coordinator = DeliveryCoordinator(
        delivery_api,
        policy=replace(default_courier_policy(), acceptance_timeout_seconds=0.1),
        notifier=notifier,
        channel_factory=lambda: silent_client,
        socket_url="https://dispatch.example",
    )
    coordinator.sign_in(courier, "jwt")

    async def scenario():
        await coordinator.go_online()
        silent_client.fire("deliveryMessage", OFFER)
        pending = asyncio.ensure_future(coordinator.accept_order("O1"))
        await asyncio.sleep(0)
        await coordinator.go_offline()
        assert not pending.done()
        return await pending

    assert asyncio.run(scenario()) is False
    assert notifier.notices[-1][0] == "Request Timeout"
    assert coordinator.state.active_orders == ()
    assert coordinator.acceptance.in_flight == set()


def test_concurrent_accepts_of_one_order_activate_it_once(coordinator, socket_client, notifier):
    async def scenario():
        await coordinator.go_online()
        socket_client.fire("deliveryMessage", OFFER)
        return await asyncio.gather(coordinator.accept_order("O1"), coordinator.accept_order("O1"))

    results = asyncio.run(scenario())

    assert sorted(results) == [False, True]
    assert coordinator.state.active_order_ids == ["O1"]
    assert [event for event, _ in socket_client.emitted] == ["acceptOrder"]
    assert [title for title, _ in notifier.notices] == ["Active Order Conflict", "Order Accepted"]
