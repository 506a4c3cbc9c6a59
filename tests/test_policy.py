import pytest

from drivers.models import CourierProfile, PositionSample
from drivers.policy import CourierPolicy, default_courier_policy
from orders.models import OrderStatus
from tracking.geolocation import GeolocationFeed


def test_default_policy_values():
    policy = default_courier_policy()

    assert policy.acceptance_timeout_seconds == 10
    assert policy.cache_ttl_seconds == 300
    assert policy.proximity_rearm_m == 300
    assert policy.send_interval_for(OrderStatus.ACCEPTED) == 10
    assert policy.send_interval_for(OrderStatus.PICKED_UP) == 5
    assert policy.send_interval_for(OrderStatus.IN_TRANSIT) == 3
    assert policy.send_interval_for(OrderStatus.DELIVERED) == 0
    assert policy.send_interval_for(None) == 3
    assert policy.send_interval_for(OrderStatus.COOKED, base_interval=8) == 8
    assert policy.send_interval_for(OrderStatus.COOKED, base_interval=0) == 3


@pytest.mark.parametrize(
    "overrides",
    [
        {"acceptance_timeout_seconds": 0},
        {"cache_ttl_seconds": -1},
        {"proximity_threshold_m": 0},
        {"proximity_rearm_factor": 1},
        {"default_send_interval_seconds": 0},
        {"status_send_intervals": {OrderStatus.ACCEPTED: -1}},
    ],
)
def test_invalid_policy_rejected(overrides):
    with pytest.raises(ValueError):
        CourierPolicy(**overrides).validate()


def test_courier_record_fallbacks():
    anonymous = CourierProfile(id="c9")

    assert anonymous.to_record() == {"id": "c9", "name": "Unknown User", "phone": "N/A", "deliveryMethod": "N/A"}
    assert CourierProfile.from_payload({"_id": "c1", "firstName": "Abebe", "lastName": "Kebede"}).display_name == "Abebe Kebede"
    with pytest.raises(ValueError):
        CourierProfile.from_payload({"firstName": "Nobody"})


def test_geolocation_feed_delivers_current_sample_on_subscribe():
    feed = GeolocationFeed()
    received = []
    feed.publish(PositionSample.new(9.0, 38.7, timestamp=1))

    unsubscribe = feed.subscribe(received.append)
    feed.publish(PositionSample.new(9.1, 38.8, timestamp=2))
    unsubscribe()
    feed.publish(PositionSample.new(9.2, 38.9, timestamp=3))

    assert [sample.timestamp for sample in received] == [1, 2]
    assert feed.current().timestamp == 3
    assert feed.subscriber_count == 0


def test_geolocation_subscriber_errors_are_isolated():
    feed = GeolocationFeed()
    received = []

    def broken(sample):
        raise RuntimeError("ui crashed")

    feed.subscribe(broken)
    feed.subscribe(received.append)
    feed.publish(PositionSample.new(9.0, 38.7))

    assert len(received) == 1
