"""
Purpose: Per-order delivery state machine for the courier's tracked order.
What it does:
- update_status: guarded status change, written to the realtime store first and
  then mirrored into the session snapshot
- verify: exchange the customer's code for completion through the REST backend;
  on success mark the record Delivered and empty the active order set

States: Cooked -> Accepted -> PickedUp -> InTransit -> Delivering -> Delivered/Completed
Attempt counting and lockout after wrong codes belong to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from api.client import DeliveryApiClient, DeliveryApiError, VerificationResult, friendly_error_message
from orders.models import OrderStatus
from tracking.realtime_store import RealtimeStore, WriteResult, order_path, utc_now_iso

from .session_state import SessionStore, delivery_completed, notice_posted, order_status_changed

logger = logging.getLogger(__name__)

# status -> timestamp field written alongside it
STATUS_TIMESTAMP_FIELDS: Dict[OrderStatus, str] = {
    OrderStatus.PICKED_UP: "pickedUpAt",
    OrderStatus.IN_TRANSIT: "inTransitAt",
    OrderStatus.DELIVERED: "deliveredAt",
}


class OrderStateException(Exception):
    """Raised when an invalid state transition is attempted."""
    pass


class DeliveryStateMachine:
    """
    Tracks the courier's current order through pickup, transit, delivery and verification.

    realtime is a zero-argument callable returning the realtime store, or None
    while tracking is not configured yet. on_delivered runs after a successful
    verification (cache invalidation and refresh live with the coordinator).
    """

    def __init__(
        self,
        store: SessionStore,
        api: DeliveryApiClient,
        realtime: Callable[[], Optional[RealtimeStore]],
        on_delivered: Optional[Callable[[str], Awaitable[None]]] = None,
    ):
        self.store = store
        self.api = api
        self._realtime = realtime
        self._on_delivered = on_delivered

    def _check_tracked(self, order_id: str) -> None:
        tracked = self.store.state.tracked_order
        if tracked is None or tracked.order_id != order_id:
            raise OrderStateException(f"Order {order_id} is not the tracked active order")
        if tracked.status.is_terminal:
            raise OrderStateException(f"Order {order_id} is already {tracked.status.value}")

    async def update_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        extra: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Write the new status (plus its timestamp field) to deliveryOrders/{order_id},
        then mirror it locally. A denied write still counts: the record is for
        tracking visibility. Returns False only when the store write failed.
        """
        self._check_tracked(order_id)

        now = utc_now_iso()
        update: Dict[str, Any] = {"status": new_status.value, "statusUpdatedAt": now}
        timestamp_field = STATUS_TIMESTAMP_FIELDS.get(new_status)
        if timestamp_field:
            update[timestamp_field] = now
        update.update(extra or {})

        realtime = self._realtime()
        if realtime is None:
            logger.info("realtime store not configured, status %s for %s kept local", new_status.value, order_id)
        else:
            result = await realtime.update(order_path(order_id), update)
            if result is WriteResult.FAILED:
                logger.error("could not write status %s for order %s", new_status.value, order_id)
                return False

        # re-read after the await: the order may have been cleared meanwhile
        if self.store.state.active_order(order_id) is None:
            logger.warning("order %s left the active set during status update", order_id)
            return False

        self.store.dispatch(order_status_changed, order_id, new_status)
        logger.info("order %s -> %s", order_id, new_status.value)
        return True

    async def verify(self, order_id: str, code: str) -> VerificationResult:
        """
        Exchange the customer-supplied code for completion.
        The backend's rejection message is returned verbatim.
        """
        try:
            result = await asyncio.to_thread(self.api.verify_delivery, order_id, code)
        except DeliveryApiError as exc:
            logger.error("verification call for %s failed: %s", order_id, exc)
            message = friendly_error_message(exc)
            self.store.dispatch(notice_posted, "Error", message)
            return VerificationResult(success=False, error=message)

        if not result.success:
            self.store.dispatch(notice_posted, "Verification Failed", result.error or "Please try again.")
            return result

        try:
            await self.update_status(
                order_id,
                OrderStatus.DELIVERED,
                {"deliveredAt": utc_now_iso(), "verificationCode": code},
            )
        except OrderStateException as exc:
            logger.warning("delivered status not recorded: %s", exc)

        self.store.dispatch(delivery_completed, order_id)
        self.store.dispatch(notice_posted, "Delivery Verified!", result.message or "Delivery completed")
        logger.info("delivery of %s verified", order_id)

        if self._on_delivered is not None:
            await self._on_delivered(order_id)

        return result
