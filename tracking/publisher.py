"""
Purpose: Location telemetry for active deliveries.
What it does:
- LocationTelemetryPublisher.tick(): one push of the courier position to the realtime store
    1. driver-global record + driver history entry
    2. per active order: order record (position, endpoints as GeoJSON, economics,
       pickup verification) + order history entry
    3. proximity detection against each order's destination
- TelemetrySupervisor: owns the single periodic task. Any change of
  (tracking flag, active-order presence, interval, online flag) cancels the current
  task before a new one is started, so two telemetry timers never coexist.

Rule: writes are best-effort. A denied or failed write is reported in the TickReport,
never raised, and never stops the loop.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Tuple

from drivers.models import PositionSample
from drivers.policy import CourierPolicy
from orders.models import LatLng, Order

from .alerts import Notifier
from .geofence import ProximityCheck, ProximityTracker
from .realtime_store import (
    UNSET,
    RealtimeStore,
    WriteResult,
    courier_history_path,
    courier_path,
    order_history_path,
    order_path,
    utc_now_iso,
)

if TYPE_CHECKING:
    from dispatch.state_machines.session_state import CourierSession

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    """What one telemetry tick wrote and detected."""
    writes: Dict[str, WriteResult] = field(default_factory=dict)
    proximity: List[ProximityCheck] = field(default_factory=list)

    @property
    def denied(self) -> List[str]:
        return [path for path, result in self.writes.items() if result is WriteResult.DENIED]

    @property
    def failed(self) -> List[str]:
        return [path for path, result in self.writes.items() if result is WriteResult.FAILED]


def _geojson(point: Optional[LatLng]) -> Optional[Dict[str, Any]]:
    return point.to_geojson() if point is not None else None


def _optional(value: Any) -> Any:
    return value if value else UNSET


class LocationTelemetryPublisher:
    """
    Builds the tracking records and writes them. Reads a fresh session snapshot
    on every call through `state`, never a captured one.
    """

    def __init__(
        self,
        state: Callable[[], CourierSession],
        realtime: Callable[[], Optional[RealtimeStore]],
        proximity: ProximityTracker,
        notifier: Notifier,
    ):
        self._state = state
        self._realtime = realtime
        self.proximity = proximity
        self.notifier = notifier

    # --- record builders ---

    def courier_record(self, session: CourierSession, position: PositionSample) -> Dict[str, Any]:
        active_ids = session.active_order_ids
        return {
            "currentLocation": position.to_record(),
            "lastLocationUpdate": utc_now_iso(),
            "deliveryPerson": session.courier.to_record(),
            "isOnline": session.online,
            "isTracking": session.location_tracking,
            "activeOrderIds": active_ids,
            "status": "Delivering" if active_ids else "Available",
        }

    def courier_history_entry(self, session: CourierSession, position: PositionSample) -> Dict[str, Any]:
        tracked = session.tracked_order
        return {
            **position.to_record(),
            "status": tracked.status.value if tracked else "Available",
            "recordedAt": utc_now_iso(),
            "activeOrderId": tracked.order_id if tracked else None,
        }

    def order_record(self, session: CourierSession, order: Order, position: Optional[PositionSample]) -> Dict[str, Any]:
        """
        Per-order tracking record. Endpoints are always GeoJSON ([lng, lat]),
        whatever shape the backend sent them in.
        """
        courier = session.courier
        now = utc_now_iso()
        return {
            "orderId": order.order_id,
            "userId": order.customer_id or "unknown",
            "deliveryPersonId": courier.id,
            "orderCode": order.order_code,
            "orderStatus": order.status.value,
            "currentDeliveryLocation": position.to_record() if position else UNSET,
            "restaurantLocation": _geojson(order.restaurant_location),
            "destinationLocation": _geojson(order.destination_location),
            "deliveryVehicle": order.delivery_vehicle or courier.delivery_method or "Unknown",
            "pickUpVerification": order.pick_up_verification_code,
            "lastLocationUpdate": now if position else UNSET,
            "deliveryPerson": courier.to_record(),
            "trackingEnabled": True,
            "deliveryFee": order.delivery_fee,
            "tip": order.tip,
            "restaurantName": _optional(order.restaurant_name),
            "customerName": _optional(order.customer_name),
            "customerPhone": _optional(order.customer_phone),
            "description": _optional(order.description),
        }

    def order_history_entry(self, order: Order, position: PositionSample) -> Dict[str, Any]:
        return {
            **position.to_record(),
            "status": order.status.value,
            "recordedAt": utc_now_iso(),
        }

    # --- writes ---

    async def _write_pair(
        self,
        realtime: RealtimeStore,
        record: Tuple[str, Dict[str, Any]],
        history: Tuple[str, Dict[str, Any]],
        report: TickReport,
    ) -> None:
        (record_path, record_body), (history_path, history_body) = record, history
        record_result, history_result = await asyncio.gather(
            realtime.update(record_path, record_body),
            realtime.push(history_path, history_body),
        )
        report.writes[record_path] = record_result
        report.writes[history_path] = history_result

    async def tick(self) -> Optional[TickReport]:
        """
        One telemetry push for the current position. Returns None when there is
        nothing to publish (no position, no courier or no active order).
        """
        session = self._state()
        position = session.current_position
        if position is None or session.courier is None or not session.active_orders:
            return None

        report = TickReport()
        realtime = self._realtime()

        if realtime is None:
            logger.warning("realtime store not configured, skipping location writes")
        else:
            courier_id = session.courier.id
            await self._write_pair(
                realtime,
                (courier_path(courier_id), self.courier_record(session, position)),
                (courier_history_path(courier_id), self.courier_history_entry(session, position)),
                report,
            )
            await asyncio.gather(
                *(
                    self._write_pair(
                        realtime,
                        (order_path(order.order_id), self.order_record(session, order, position)),
                        (order_history_path(order.order_id), self.order_history_entry(order, position)),
                        report,
                    )
                    for order in session.active_orders
                )
            )

        # proximity runs against the same snapshot, whatever the writes did
        origin = (position.latitude, position.longitude)
        for order in session.active_orders:
            check = self.proximity.check(order.order_id, origin, order.destination_location)
            if check is None:
                continue
            report.proximity.append(check)
            if check.alert:
                logger.info("order %s destination within %dm", order.order_id, round(check.distance_m))
                self.notifier.approaching_destination(order, check.distance_m)

        if report.failed:
            logger.warning("telemetry writes failed: %s", ", ".join(report.failed))
        return report

    async def initialize_order_tracking(self, order: Order) -> WriteResult:
        """
        First record for a freshly accepted order.
        """
        realtime = self._realtime()
        session = self._state()
        if realtime is None or session.courier is None:
            return WriteResult.FAILED

        now = utc_now_iso()
        position = session.current_position
        record = {
            "orderId": order.order_id,
            "orderCode": order.order_code,
            "status": order.status.value,
            "acceptedAt": now,
            "deliveryPerson": session.courier.to_record(),
            "restaurantLocation": _geojson(order.restaurant_location),
            "destinationLocation": _geojson(order.destination_location),
            "trackingEnabled": True,
            "lastLocationUpdate": now,
            "createdAt": now,
            "currentDeliveryLocation": position.to_record() if position else UNSET,
        }
        return await realtime.update(order_path(order.order_id), record)

    async def publish_order_status(self, orders: Iterable[Order]) -> Dict[str, WriteResult]:
        """
        Replace the order record for each order (used for freshly fetched
        Delivering orders so the customer side sees them immediately).
        """
        realtime = self._realtime()
        session = self._state()
        results: Dict[str, WriteResult] = {}
        if realtime is None or session.courier is None:
            return results

        position = session.current_position
        for order in orders:
            now = utc_now_iso()
            record = self.order_record(session, order, position)
            record.update({"createdAt": order.created_at or now, "lastStatusUpdate": now, "updatedAt": now})
            results[order.order_id] = await realtime.set(order_path(order.order_id), record)
        return results


class TelemetrySupervisor:
    """
    Supervised periodic task for the publisher.

    reconcile(session) is called on every session change. The loop runs while
    location tracking is on and at least one order is active; the interval comes
    from the tracked order's status (policy table) or the backend base interval.
    """

    def __init__(self, publisher: LocationTelemetryPublisher, policy: CourierPolicy):
        self.publisher = publisher
        self.policy = policy
        self._task: Optional[asyncio.Task] = None
        self._key: Optional[Tuple[Any, ...]] = None
        self._interval: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def interval(self) -> Optional[float]:
        return self._interval if self.running else None

    def desired_interval(self, session: CourierSession) -> float:
        tracked = session.tracked_order
        return self.policy.send_interval_for(
            tracked.status if tracked else None, session.send_interval_seconds
        )

    def reconcile(self, session: CourierSession) -> None:
        should_run = session.location_tracking and bool(session.active_orders)
        interval = self.desired_interval(session) if should_run else None
        key = (session.location_tracking, bool(session.active_orders), interval, session.online)
        if key == self._key:
            return

        self._cancel()
        if should_run and interval:
            self._start(interval)
        self._key = key

    def halt(self) -> None:
        """
        Stop the loop without forgetting the current configuration; it stays
        down until resume() or the next configuration change.
        """
        if self.running:
            logger.info("telemetry halted")
        self._cancel()

    def resume(self, session: CourierSession) -> None:
        """Restart a halted loop for the current configuration (channel back up)."""
        if self.running:
            return
        self._key = None
        self.reconcile(session)

    def stop(self) -> None:
        """Stop and forget everything (logout)."""
        self._cancel()
        self._key = None

    def _cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._interval = None

    def _start(self, interval: float) -> None:
        self._task = asyncio.get_running_loop().create_task(self._run(interval))
        self._interval = interval
        logger.info("telemetry started every %ss", interval)

    async def _run(self, interval: float) -> None:
        # sleep first: a rebuilt loop never fires in the same tick as the old one
        while True:
            await asyncio.sleep(interval)
            try:
                await self.publisher.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("telemetry tick failed")
