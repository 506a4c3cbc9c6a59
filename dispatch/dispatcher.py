"""
Purpose: Orchestrator for one courier session (the "glue").
What it does:
Wires the session store, dispatch channel, acceptance protocol, delivery state
machine, REST cache and location telemetry together, and is the error boundary:
every public coroutine folds failures into the session snapshot and returns a
plain result.

Flow:
sign_in -> go_online (channel connects) -> offers arrive -> accept_order
-> update_status (PickedUp, InTransit, ...) -> verify -> history refresh
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from api.client import (
    DeliveryApiClient,
    DeliveryApiError,
    TrackingConfig,
    VerificationResult,
    friendly_error_message,
)
from drivers.models import CourierProfile, PositionSample
from drivers.policy import CourierPolicy, default_courier_policy
from orders.cache import CacheKey, CacheStore
from orders.earnings import EarningsSummary, summarize_earnings
from orders.models import Order, OrderStatus
from tracking.alerts import LoggingNotifier, Notifier
from tracking.geofence import ProximityTracker
from tracking.geolocation import GeolocationFeed
from tracking.publisher import LocationTelemetryPublisher, TelemetrySupervisor, TickReport
from tracking.realtime_store import RealtimeStore

from .acceptance import AcceptanceCategory, NotConnectedError, OrderAcceptanceProtocol
from .channel import ChannelManager
from .state_machines.order_state import DeliveryStateMachine, OrderStateException
from .state_machines.session_state import (
    CourierSession,
    SessionStore,
    active_orders_failed,
    active_orders_loaded,
    available_orders_failed,
    available_orders_loaded,
    credential_lost,
    history_failed,
    history_loaded,
    logged_out,
    notice_posted,
    offer_dismissed,
    offer_removed,
    order_accepted,
    position_updated,
    send_interval_configured,
    signed_in,
    tracking_failed,
    tracking_stopped,
    went_offline,
    went_online,
)

logger = logging.getLogger(__name__)

# offer fields that fill gaps in a sparse acceptance ack
_OFFER_FALLBACK_FIELDS = (
    "restaurant_location",
    "destination_location",
    "delivery_fee",
    "tip",
    "pick_up_verification_code",
    "restaurant_name",
    "customer_id",
    "customer_name",
    "customer_phone",
    "description",
    "delivery_vehicle",
    "distance_km",
    "created_at",
)

RealtimeFactory = Callable[[TrackingConfig], RealtimeStore]


def _default_realtime_factory(config: TrackingConfig) -> RealtimeStore:
    return RealtimeStore(config.database_url)


class DeliveryCoordinator:
    """
    One instance per signed-in courier. All collaborators are injectable so the
    whole session can run against fakes (see scripts/run_delivery_simulation.py).
    """

    def __init__(
        self,
        api: DeliveryApiClient,
        *,
        policy: Optional[CourierPolicy] = None,
        notifier: Optional[Notifier] = None,
        geolocation: Optional[GeolocationFeed] = None,
        channel_factory=None,
        socket_url: Optional[str] = None,
        realtime_factory: Optional[RealtimeFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policy = policy or default_courier_policy()
        self.policy.validate()
        self.api = api
        self.notifier = notifier or LoggingNotifier()
        self.geolocation = geolocation or GeolocationFeed()
        self.store = SessionStore()

        self._realtime: Optional[RealtimeStore] = None
        self._realtime_factory = realtime_factory or _default_realtime_factory
        self._unsubscribe_position: Optional[Callable[[], None]] = None

        self.cache = CacheStore(
            {
                CacheKey.AVAILABLE_ORDERS: self._fetch_available_orders,
                CacheKey.ACTIVE_ORDERS: self._fetch_active_orders,
                CacheKey.DELIVERY_HISTORY: self._fetch_history,
            },
            ttl_seconds=self.policy.cache_ttl_seconds,
            clock=clock,
        )
        self.proximity = ProximityTracker(
            threshold_m=self.policy.proximity_threshold_m,
            rearm_factor=self.policy.proximity_rearm_factor,
        )
        self.publisher = LocationTelemetryPublisher(
            lambda: self.store.state, self.realtime, self.proximity, self.notifier
        )
        self.telemetry = TelemetrySupervisor(self.publisher, self.policy)
        self.channel = ChannelManager(
            self.store,
            self.notifier,
            url=socket_url,
            channel_factory=channel_factory,
            on_drop=self.telemetry.halt,
            on_connect=lambda: self.telemetry.resume(self.store.state),
        )
        self.acceptance = OrderAcceptanceProtocol(
            self.channel, timeout_seconds=self.policy.acceptance_timeout_seconds
        )
        self.delivery = DeliveryStateMachine(
            self.store, self.api, self.realtime, on_delivered=self._after_delivery
        )

        self.store.subscribe(self._on_session_change)

    @property
    def state(self) -> CourierSession:
        return self.store.state

    def realtime(self) -> Optional[RealtimeStore]:
        return self._realtime

    def _notice(self, title: str, message: str) -> None:
        self.store.dispatch(notice_posted, title, message)

    def _on_session_change(self, previous: CourierSession, current: CourierSession) -> None:
        self.telemetry.reconcile(current)

        if current.last_notice is not None and current.last_notice is not previous.last_notice:
            self.notifier.notice(current.last_notice.title, current.last_notice.message)

        if previous.active_orders and not current.active_orders:
            self.proximity.forget()
            self.notifier.stop_alarm()

        #----------------
        # Session lifecycle
        #----------------
    def sign_in(self, courier: CourierProfile, token: str) -> None:
        self.api.token = token
        self.store.dispatch(signed_in, courier, token)
        logger.info("courier %s signed in", courier.id)

    async def credential_lost(self) -> None:
        self.store.dispatch(credential_lost)
        await self.channel.disconnect()

    async def go_online(self) -> bool:
        if not self.state.has_credential:
            self._notice("Error", "Please log in to go online.")
            return False
        self.store.dispatch(went_online)
        return await self.channel.connect()

    async def go_offline(self) -> None:
        self.store.dispatch(went_offline)
        await self.channel.disconnect()

    async def reconnect(self) -> bool:
        return await self.channel.reconnect()

    async def logout(self) -> None:
        """
        Drop everything: channel, telemetry task, alarm, geolocation
        subscription, caches and the session itself.
        """
        self.store.dispatch(logged_out)
        await self.channel.disconnect()
        self.telemetry.stop()
        self.notifier.stop_alarm()
        if self._unsubscribe_position is not None:
            self._unsubscribe_position()
            self._unsubscribe_position = None
        self.cache.invalidate()
        self.proximity.forget()
        self._realtime = None
        self.api.token = None
        logger.info("logged out")

        #----------------
        # Offers and acceptance
        #----------------
    def _merge_offer(self, order: Order) -> Order:
        session = self.state
        offer = next(
            (
                candidate
                for candidate in session.pending_offers + session.available_orders
                if candidate.order_id == order.order_id
            ),
            None,
        )
        if offer is None:
            return order
        updates = {
            name: getattr(offer, name)
            for name in _OFFER_FALLBACK_FIELDS
            if not getattr(order, name) and getattr(offer, name)
        }
        return replace(order, **updates) if updates else order

    async def accept_order(self, order_id: str) -> bool:
        courier = self.state.courier
        if courier is None:
            self._notice("Error", "Delivery person ID not found")
            return False

        try:
            result = await self.acceptance.request(order_id, courier.id)
        except NotConnectedError as exc:
            self._notice("Error", str(exc))
            return False

        if not result.accepted:
            if result.category is AcceptanceCategory.ORDER_TAKEN:
                self.store.dispatch(offer_removed, order_id)
            self._notice(*result.notice())
            return False

        order = self._merge_offer(result.order)
        first_order = not self.state.active_orders
        self.store.dispatch(order_accepted, order)

        if first_order:
            await self._prime_tracking()
        tracking = await self.publisher.initialize_order_tracking(order)
        if not tracking.ok:
            logger.warning("tracking record for %s not initialized (%s)", order_id, tracking.value)

        self._notice(*result.notice())
        return True

    def decline_offer(self, order_id: str) -> None:
        self.store.dispatch(offer_removed, order_id)
        self.notifier.stop_alarm()

    def dismiss_offer(self) -> None:
        self.store.dispatch(offer_dismissed)
        self.notifier.stop_alarm()

    async def _prime_tracking(self) -> None:
        """
        Load the realtime store configuration once per session. The backend's
        send interval becomes the base telemetry interval.
        """
        if self._realtime is not None:
            return
        try:
            config = await asyncio.to_thread(self.api.fetch_tracking_config)
        except DeliveryApiError as exc:
            logger.warning("tracking config unavailable: %s", exc)
            return
        self._realtime = self._realtime_factory(config)
        self.store.dispatch(send_interval_configured, config.send_interval_seconds)
        logger.info("realtime tracking configured (%s)", config.database_url)

        #----------------
        # Delivery
        #----------------
    async def update_status(self, order_id: str, status: OrderStatus, extra: Optional[Dict] = None) -> bool:
        try:
            return await self.delivery.update_status(order_id, status, extra)
        except OrderStateException as exc:
            self._notice("Error", str(exc))
            return False

    async def verify(self, order_id: str, code: str) -> VerificationResult:
        return await self.delivery.verify(order_id, code)

    async def _after_delivery(self, order_id: str) -> None:
        self.cache.invalidate(CacheKey.ACTIVE_ORDERS)
        self.cache.invalidate(CacheKey.DELIVERY_HISTORY)
        await asyncio.gather(self.refresh_active_orders(), self.refresh_history())

        #----------------
        # REST-backed lists
        #----------------
    async def _fetch_available_orders(self) -> List[Order]:
        return await asyncio.to_thread(self.api.fetch_available_orders)

    async def _fetch_active_orders(self) -> List[Order]:
        cooked, delivering = await asyncio.gather(
            asyncio.to_thread(self.api.fetch_orders_by_status, OrderStatus.COOKED),
            asyncio.to_thread(self.api.fetch_orders_by_status, OrderStatus.DELIVERING),
        )
        merged: Dict[str, Order] = {}
        for order in list(cooked) + list(delivering):
            merged.setdefault(order.order_id, order)

        if merged:
            await self._prime_tracking()
        if delivering:
            await self.publisher.publish_order_status(delivering)
        return list(merged.values())

    async def _fetch_history(self) -> List[Order]:
        return await asyncio.to_thread(self.api.fetch_delivery_history)

    async def refresh_available_orders(self, force_refresh: bool = False) -> List[Order]:
        try:
            orders = await self.cache.get(CacheKey.AVAILABLE_ORDERS, force_refresh)
        except DeliveryApiError as exc:
            logger.error("available orders refresh failed: %s", exc)
            self.store.dispatch(available_orders_failed, friendly_error_message(exc))
            return list(self.state.available_orders)
        self.store.dispatch(available_orders_loaded, orders)
        return list(orders)

    async def refresh_active_orders(self, force_refresh: bool = False) -> List[Order]:
        try:
            orders = await self.cache.get(CacheKey.ACTIVE_ORDERS, force_refresh)
        except DeliveryApiError as exc:
            logger.error("active orders refresh failed: %s", exc)
            self.store.dispatch(active_orders_failed, friendly_error_message(exc))
            return list(self.state.active_orders)
        self.store.dispatch(active_orders_loaded, orders)
        return list(orders)

    async def refresh_history(self, force_refresh: bool = False) -> List[Order]:
        try:
            orders = await self.cache.get(CacheKey.DELIVERY_HISTORY, force_refresh)
        except DeliveryApiError as exc:
            logger.error("history refresh failed: %s", exc)
            self.store.dispatch(history_failed, friendly_error_message(exc))
            return list(self.state.delivery_history)
        self.store.dispatch(history_loaded, orders)
        return list(orders)

    def earnings(self, now=None) -> EarningsSummary:
        return summarize_earnings(self.state.delivery_history, now)

        #----------------
        # Location
        #----------------
    def start_location_tracking(self) -> None:
        if self._unsubscribe_position is not None:
            return
        self._unsubscribe_position = self.geolocation.subscribe(self._on_position)
        logger.info("location tracking started")

    def stop_location_tracking(self) -> None:
        if self._unsubscribe_position is not None:
            self._unsubscribe_position()
            self._unsubscribe_position = None
        self.store.dispatch(tracking_stopped)
        logger.info("location tracking stopped")

    def location_unavailable(self, message: str) -> None:
        """The host reports that positions cannot be obtained (permission, hardware)."""
        if self._unsubscribe_position is not None:
            self._unsubscribe_position()
            self._unsubscribe_position = None
        self.store.dispatch(tracking_failed, message)

    def _on_position(self, sample: PositionSample) -> None:
        self.store.dispatch(position_updated, sample)

    async def send_location_now(self) -> Optional[TickReport]:
        if self.state.current_position is None:
            self._notice("Location Error", "Current location not available")
            return None
        return await self.publisher.tick()
