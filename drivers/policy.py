"""
Purpose: Central configuration for the courier session coordinator.
What it does:

Stores all tunable thresholds/caps for acceptance, caching and telemetry:

ACCEPTANCE_TIMEOUT_SECONDS = 10
CACHE_TTL_SECONDS = 300
PROXIMITY_THRESHOLD_M = 200 (re-armed beyond 1.5x)
DEFAULT_SEND_INTERVAL_SECONDS = 3
STATUS_SEND_INTERVALS = Accepted 10s, PickedUp 5s, InTransit 3s, Delivered stop

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from orders.models import OrderStatus


@dataclass(frozen=True)
class CourierPolicy:
    """
    Central configuration for the delivery session.
    """

    # --- Order acceptance ---
    # How long to wait for the dispatch backend to acknowledge an accept request.
    acceptance_timeout_seconds: float = 10

    # --- REST cache ---
    cache_ttl_seconds: float = 300  # 5 minutes

    # --- Proximity alert ---
    # Alert once inside the threshold, re-arm once further than threshold * factor.
    proximity_threshold_m: float = 200
    proximity_rearm_factor: float = 1.5

    # --- Telemetry cadence ---
    # Base interval; the backend tracking config may override it at runtime.
    default_send_interval_seconds: float = 3

    # Per-status override of the base interval. 0 stops the loop.
    status_send_intervals: Dict[OrderStatus, float] = field(
        default_factory=lambda: {
            OrderStatus.ACCEPTED: 10,
            OrderStatus.PICKED_UP: 5,
            OrderStatus.IN_TRANSIT: 3,
            OrderStatus.DELIVERED: 0,
        }
    )

    @property
    def proximity_rearm_m(self) -> float:
        return self.proximity_threshold_m * self.proximity_rearm_factor

    def send_interval_for(self, status: Optional[OrderStatus], base_interval: Optional[float] = None) -> float:
        """
        Status table first, then the backend-provided base interval, then the default.
        """
        if status is not None and status in self.status_send_intervals:
            return self.status_send_intervals[status]
        if base_interval is not None and base_interval > 0:
            return base_interval
        return self.default_send_interval_seconds

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        if self.acceptance_timeout_seconds <= 0:
            raise ValueError("acceptance_timeout_seconds must be > 0")

        if self.cache_ttl_seconds <= 0:
            raise ValueError("cache_ttl_seconds must be > 0")

        if self.proximity_threshold_m <= 0:
            raise ValueError("proximity_threshold_m must be > 0")

        if self.proximity_rearm_factor <= 1:
            raise ValueError("proximity_rearm_factor must be > 1")

        if self.default_send_interval_seconds <= 0:
            raise ValueError("default_send_interval_seconds must be > 0")

        if any(interval < 0 for interval in self.status_send_intervals.values()):
            raise ValueError("status_send_intervals cannot be negative")


def default_courier_policy() -> CourierPolicy:
    """
    Convenience factory for the default policy.
    """
    p = CourierPolicy()
    p.validate()
    return p
