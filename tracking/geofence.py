#Purpose: Great-circle distance and destination proximity detection.
#Typical responsibilities:
#haversine distance between the courier and a destination
#one-shot "approaching destination" alert per order when inside the threshold
#re-arming the alert once the courier moves back out past threshold * rearm factor
#Output: a ProximityCheck per order per telemetry tick.

from dataclasses import dataclass
from typing import Optional, Set, Tuple
import math

from orders.models import LatLng

#internal coordinate type :(lat,lon)
LatLon = Tuple[float, float]

EARTH_RADIUS_KM = 6371


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    a = sin²(Δlat/2) + cos(lat1)·cos(lat2)·sin²(Δlon/2)
    distance = 2R·atan2(√a, √(1−a))
    """
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) * math.sin(d_lat / 2)
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) * math.sin(d_lon / 2)
    )
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_m(origin: LatLon, destination: LatLng) -> float:
    return haversine_km(origin[0], origin[1], destination.lat, destination.lng) * 1000


@dataclass(frozen=True)
class ProximityCheck:
    """
    Result of one proximity evaluation for one order.
    """
    order_id: str
    distance_m: float
    alert: bool       # fire the approaching-destination alert now
    notified: bool    # order is in the notified set after this check


class ProximityTracker:
    """
    Holds the set of orders already alerted for "within threshold of destination".

    An order is alerted once when distance <= threshold. It is evicted from the
    set only when distance > threshold * rearm_factor, so hovering around the
    threshold does not re-alert.
    """

    def __init__(self, threshold_m: float = 200, rearm_factor: float = 1.5):
        if threshold_m <= 0:
            raise ValueError("threshold_m must be > 0")
        self.threshold_m = threshold_m
        self.rearm_m = threshold_m * rearm_factor
        self._notified: Set[str] = set()

    @property
    def notified(self) -> Set[str]:
        return set(self._notified)

    def observe(self, order_id: str, distance_m: float) -> ProximityCheck:
        alert = False
        if distance_m <= self.threshold_m:
            if order_id not in self._notified:
                self._notified.add(order_id)
                alert = True
        elif distance_m > self.rearm_m:
            self._notified.discard(order_id)

        return ProximityCheck(
            order_id=order_id,
            distance_m=distance_m,
            alert=alert,
            notified=order_id in self._notified,
        )

    def check(self, order_id: str, position: LatLon, destination: Optional[LatLng]) -> Optional[ProximityCheck]:
        #no destination -> nothing to compare against
        if destination is None:
            return None
        return self.observe(order_id, distance_m(position, destination))

    def forget(self, order_id: Optional[str] = None) -> None:
        if order_id is None:
            self._notified.clear()
        else:
            self._notified.discard(order_id)
