"""
Purpose: The courier session as an immutable snapshot plus pure transitions.
What it does:
- CourierSession holds everything the UI reads (online/connected flags, offers,
  active orders, cached lists, errors, last position)
- Every event is a pure function (session, ...) -> new session built with replace()
- SessionStore owns the current snapshot, applies transitions and notifies listeners

Rule: transitions never perform I/O. Callers that await must re-read
store.state afterwards instead of holding on to an old snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Iterable, List, Optional, Tuple

from drivers.models import CourierProfile, PositionSample
from orders.models import Order, OrderStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notice:
    """A user-facing message (alert/toast) raised by the coordinator."""
    title: str
    message: str


@dataclass(frozen=True)
class CourierSession:
    courier: Optional[CourierProfile] = None
    token: Optional[str] = None

    # --- connectivity ---
    online: bool = False
    connected: bool = False
    socket_error: Optional[str] = None

    # --- location ---
    current_position: Optional[PositionSample] = None
    location_tracking: bool = False
    location_error: Optional[str] = None
    send_interval_seconds: Optional[float] = None  # backend-provided base interval

    # --- offers and assignments ---
    pending_offers: Tuple[Order, ...] = ()
    current_offer: Optional[Order] = None
    new_offer_flag: bool = False
    active_orders: Tuple[Order, ...] = ()
    accepted_order: Optional[Order] = None

    # --- REST-backed lists ---
    available_orders: Tuple[Order, ...] = ()
    delivery_history: Tuple[Order, ...] = ()
    orders_error: Optional[str] = None
    active_orders_error: Optional[str] = None
    history_error: Optional[str] = None

    last_notice: Optional[Notice] = None

    @property
    def has_credential(self) -> bool:
        return bool(self.token) and self.courier is not None

    @property
    def available_for_assignment(self) -> bool:
        return not self.active_orders

    @property
    def tracked_order(self) -> Optional[Order]:
        """The order status updates apply to: the first active order."""
        return self.active_orders[0] if self.active_orders else None

    @property
    def active_order_ids(self) -> List[str]:
        return [order.order_id for order in self.active_orders]

    def active_order(self, order_id: str) -> Optional[Order]:
        for order in self.active_orders:
            if order.order_id == order_id:
                return order
        return None


def _without(orders: Iterable[Order], order_id: str) -> Tuple[Order, ...]:
    return tuple(order for order in orders if order.order_id != order_id)


# --- authentication ---

def signed_in(session: CourierSession, courier: CourierProfile, token: str) -> CourierSession:
    return replace(session, courier=courier, token=token)


def credential_lost(session: CourierSession) -> CourierSession:
    return replace(session, token=None, connected=False)


def logged_out(session: CourierSession) -> CourierSession:
    return CourierSession()


# --- online flag and channel ---

def went_online(session: CourierSession) -> CourierSession:
    return replace(session, online=True)


def went_offline(session: CourierSession) -> CourierSession:
    return replace(session, online=False, connected=False)


def channel_connected(session: CourierSession) -> CourierSession:
    return replace(session, connected=True, socket_error=None)


def channel_disconnected(session: CourierSession) -> CourierSession:
    return replace(session, connected=False)


def channel_failed(session: CourierSession, message: str) -> CourierSession:
    return replace(session, connected=False, socket_error=message)


def socket_error_cleared(session: CourierSession) -> CourierSession:
    return replace(session, socket_error=None)


# --- offers ---

def offer_received(session: CourierSession, order: Order) -> CourierSession:
    pending = _without(session.pending_offers, order.order_id) + (order,)
    return replace(session, pending_offers=pending, current_offer=order, new_offer_flag=True)


def offer_removed(session: CourierSession, order_id: str) -> CourierSession:
    """Claimed by another courier, declined, or found stale."""
    current = session.current_offer
    if current is not None and current.order_id == order_id:
        current = None
    return replace(
        session,
        pending_offers=_without(session.pending_offers, order_id),
        available_orders=_without(session.available_orders, order_id),
        current_offer=current,
    )


def offer_dismissed(session: CourierSession) -> CourierSession:
    return replace(session, current_offer=None, new_offer_flag=False)


def order_accepted(session: CourierSession, order: Order) -> CourierSession:
    session = offer_removed(session, order.order_id)
    if not session.active_orders:
        active = (order,)
    else:
        active = _without(session.active_orders, order.order_id) + (order,)
    return replace(
        session,
        active_orders=active,
        accepted_order=order,
        current_offer=None,
        new_offer_flag=False,
    )


# --- active orders and delivery ---

def active_orders_loaded(session: CourierSession, orders: Iterable[Order]) -> CourierSession:
    return replace(session, active_orders=tuple(orders), active_orders_error=None)


def active_orders_failed(session: CourierSession, message: str) -> CourierSession:
    return replace(session, active_orders_error=message)


def order_status_changed(session: CourierSession, order_id: str, status: OrderStatus) -> CourierSession:
    active = tuple(
        order.with_status(status) if order.order_id == order_id else order
        for order in session.active_orders
    )
    return replace(session, active_orders=active)


def delivery_completed(session: CourierSession, order_id: str) -> CourierSession:
    logger.debug("clearing active orders after delivery of %s", order_id)
    return replace(session, active_orders=(), accepted_order=None)


# --- REST lists ---

def available_orders_loaded(session: CourierSession, orders: Iterable[Order]) -> CourierSession:
    return replace(session, available_orders=tuple(orders), orders_error=None)


def available_orders_failed(session: CourierSession, message: str) -> CourierSession:
    return replace(session, orders_error=message)


def history_loaded(session: CourierSession, orders: Iterable[Order]) -> CourierSession:
    return replace(session, delivery_history=tuple(orders), history_error=None)


def history_failed(session: CourierSession, message: str) -> CourierSession:
    return replace(session, history_error=message)


# --- location ---

def position_updated(session: CourierSession, sample: PositionSample) -> CourierSession:
    return replace(session, current_position=sample, location_tracking=True, location_error=None)


def tracking_stopped(session: CourierSession) -> CourierSession:
    return replace(session, location_tracking=False)


def tracking_failed(session: CourierSession, message: str) -> CourierSession:
    return replace(session, location_tracking=False, location_error=message)


def send_interval_configured(session: CourierSession, seconds: Optional[float]) -> CourierSession:
    return replace(session, send_interval_seconds=seconds)


# --- notices ---

def notice_posted(session: CourierSession, title: str, message: str) -> CourierSession:
    return replace(session, last_notice=Notice(title=title, message=message))


Listener = Callable[[CourierSession, CourierSession], None]


class SessionStore:
    """
    Single owner of the current CourierSession snapshot.

    dispatch() applies a transition synchronously, so two transitions can
    never interleave. Listeners get (previous, current) after every change.
    """

    def __init__(self, initial: Optional[CourierSession] = None):
        self._state = initial or CourierSession()
        self._listeners: List[Listener] = []

    @property
    def state(self) -> CourierSession:
        return self._state

    def dispatch(self, transition: Callable[..., CourierSession], *args, **kwargs) -> CourierSession:
        previous = self._state
        self._state = transition(previous, *args, **kwargs)
        if self._state is not previous:
            for listener in list(self._listeners):
                try:
                    listener(previous, self._state)
                except Exception:
                    logger.exception("session listener failed")
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
