"""
Purpose: Attention signals the coordinator raises but does not render.
What it does:
Defines the Notifier seam (new offer sound, approaching-destination alarm,
user notices). Sound, vibration and dialogs are the host app's job; the
default implementation only logs.
"""

from __future__ import annotations

import logging
from typing import Protocol

from orders.models import Order

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def new_offer(self, order: Order) -> None: ...

    def approaching_destination(self, order: Order, distance_m: float) -> None: ...

    def stop_alarm(self) -> None: ...

    def notice(self, title: str, message: str) -> None: ...


class LoggingNotifier:
    def new_offer(self, order: Order) -> None:
        logger.info("new offer %s (fee %.2f, tip %.2f)", order.order_code, order.delivery_fee, order.tip)

    def approaching_destination(self, order: Order, distance_m: float) -> None:
        logger.info("approaching destination of %s: %dm", order.order_code, round(distance_m))

    def stop_alarm(self) -> None:
        logger.debug("alarm stopped")

    def notice(self, title: str, message: str) -> None:
        logger.info("%s: %s", title, message)
