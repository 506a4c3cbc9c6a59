"""
Purpose: Courier side of "offer an order, exactly one courier wins".
What it does:
- request(order_id, courier_id): emit acceptOrder over the dispatch channel and
  wait for one acknowledgement (10s timeout)
- classify a rejection into a fixed set of user-facing categories

Rules:
- never claim success without an explicit success ack
- never retry automatically
- the first resolution wins (ack or timeout); a late ack is logged and dropped
- a second request for an order that is already in flight is a conflict
  and is not sent
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Set, Tuple

from orders.models import Order, OrderStatus, fallback_order_code

logger = logging.getLogger(__name__)

ACCEPT_EVENT = "acceptOrder"


class NotConnectedError(Exception):
    """Raised when an acceptance is attempted without a connected dispatch channel."""
    pass


class AcceptanceCategory(str, Enum):
    ACCEPTED = "accepted"
    CONFLICT = "conflict"            # courier already has an active order
    ORDER_TAKEN = "order_taken"      # another courier won
    MALFORMED_ID = "malformed_id"    # order id missing from the request
    INVALID_ID = "invalid_id"
    OTHER = "other"
    TIMEOUT = "timeout"
    NOT_CONNECTED = "not_connected"


# structured ack codes, checked before falling back to message text
REJECTION_CODES: Dict[str, AcceptanceCategory] = {
    "ACTIVE_ORDER_EXISTS": AcceptanceCategory.CONFLICT,
    "ORDER_NOT_AVAILABLE": AcceptanceCategory.ORDER_TAKEN,
    "ORDER_ID_REQUIRED": AcceptanceCategory.MALFORMED_ID,
    "INVALID_ORDER_ID": AcceptanceCategory.INVALID_ID,
}

# backend message fragment -> category, in match order
REJECTION_PHRASES: Tuple[Tuple[str, AcceptanceCategory], ...] = (
    ("you already have an active order", AcceptanceCategory.CONFLICT),
    ("order is not available for acceptance", AcceptanceCategory.ORDER_TAKEN),
    ("order id is required", AcceptanceCategory.MALFORMED_ID),
    ("invalid order id", AcceptanceCategory.INVALID_ID),
)

NOTICES: Dict[AcceptanceCategory, Tuple[str, str]] = {
    AcceptanceCategory.CONFLICT: (
        "Active Order Conflict",
        "You already have an active order in progress. "
        "Please complete or cancel your current order before accepting a new one.",
    ),
    AcceptanceCategory.ORDER_TAKEN: (
        "Order No Longer Available",
        "This order is no longer available for acceptance. "
        "It may have been taken by another delivery person.",
    ),
    AcceptanceCategory.MALFORMED_ID: (
        "Invalid Request",
        "Order ID is missing from your request. Please try again.",
    ),
    AcceptanceCategory.INVALID_ID: (
        "Invalid Order ID",
        "The order ID provided is not valid. Please try again.",
    ),
    AcceptanceCategory.TIMEOUT: (
        "Request Timeout",
        "The server didn't respond in time. Please check your connection and try again.",
    ),
    AcceptanceCategory.NOT_CONNECTED: (
        "Error",
        "Not connected to server. Please go ONLINE to accept orders.",
    ),
}


def classify_rejection(message: Optional[str], code: Optional[str] = None) -> AcceptanceCategory:
    if code and code in REJECTION_CODES:
        return REJECTION_CODES[code]
    text = (message or "").lower()
    for phrase, category in REJECTION_PHRASES:
        if phrase in text:
            return category
    return AcceptanceCategory.OTHER


@dataclass(frozen=True)
class AcceptanceResult:
    order_id: str
    category: AcceptanceCategory
    order: Optional[Order] = None
    message: str = ""

    @property
    def accepted(self) -> bool:
        return self.category is AcceptanceCategory.ACCEPTED

    def notice(self) -> Tuple[str, str]:
        """(title, message) to show the courier."""
        if self.accepted:
            return "Order Accepted", f"Order {self.order.order_code if self.order else self.order_id} accepted!"
        if self.category in NOTICES:
            return NOTICES[self.category]
        return "Order Acceptance Failed", self.message or "Failed to accept order"


def order_from_ack(order_id: str, data: Any) -> Order:
    """
    The accepted order as described by the ack payload. Missing fields fall
    back to the ORD- code and the Accepted status.
    """
    if isinstance(data, dict) and data:
        order = Order.from_payload(data, default_status=OrderStatus.ACCEPTED, order_id=order_id)
        if order is not None:
            return order
    return Order(
        order_id=order_id,
        order_code=fallback_order_code(order_id),
        status=OrderStatus.ACCEPTED,
    )


class OrderAcceptanceProtocol:
    """
    channel is anything with a `connected` flag and an awaitable
    emit(event, data, callback=...) (the ChannelManager in practice).
    """

    def __init__(self, channel, timeout_seconds: float = 10):
        self.channel = channel
        self.timeout_seconds = timeout_seconds
        self._in_flight: Set[str] = set()

    @property
    def in_flight(self) -> Set[str]:
        return set(self._in_flight)

    async def request(self, order_id: str, courier_id: str) -> AcceptanceResult:
        if not self.channel.connected:
            raise NotConnectedError("Not connected to server. Please go ONLINE to accept orders.")

        if order_id in self._in_flight:
            logger.warning("acceptance of %s already in flight, not sending again", order_id)
            return AcceptanceResult(
                order_id, AcceptanceCategory.CONFLICT, message="Acceptance already in progress"
            )

        loop = asyncio.get_running_loop()
        ack: asyncio.Future = loop.create_future()

        def on_ack(*args: Any) -> None:
            if ack.done():
                logger.warning("late acceptance ack for %s discarded", order_id)
                return
            ack.set_result(args[0] if args else None)

        self._in_flight.add(order_id)
        try:
            await self.channel.emit(
                ACCEPT_EVENT,
                {"orderId": order_id, "deliveryPersonId": courier_id},
                callback=on_ack,
            )
            # wait_for cancels the future on expiry, so a later ack finds it done
            response = await asyncio.wait_for(ack, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("no acceptance ack for %s within %ss", order_id, self.timeout_seconds)
            return AcceptanceResult(order_id, AcceptanceCategory.TIMEOUT)
        except NotConnectedError as exc:
            return AcceptanceResult(order_id, AcceptanceCategory.NOT_CONNECTED, message=str(exc))
        finally:
            self._in_flight.discard(order_id)

        return self._interpret(order_id, response)

    def _interpret(self, order_id: str, response: Any) -> AcceptanceResult:
        if isinstance(response, dict) and response.get("status") == "success":
            order = order_from_ack(order_id, response.get("data"))
            logger.info("order %s accepted", order_id)
            return AcceptanceResult(
                order_id,
                AcceptanceCategory.ACCEPTED,
                order=order,
                message=response.get("message") or "Order accepted successfully",
            )

        message = "Failed to accept order"
        code = None
        if isinstance(response, dict):
            message = response.get("message") or message
            code = response.get("code")
        category = classify_rejection(message, code)
        logger.info("order %s rejected (%s): %s", order_id, category.value, message)
        return AcceptanceResult(order_id, category, message=message)
