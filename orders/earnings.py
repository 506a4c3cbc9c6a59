"""
Purpose: Earnings summary over the delivery history.
What it does:
Loads completed orders into a DataFrame and aggregates fee + tip per period
(today, last 7 days, this calendar month, all time).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Sequence

import pandas as pd

from .models import Order

PERIODS = ("today", "week", "month", "all")


@dataclass(frozen=True)
class EarningsStats:
    total: float = 0.0
    count: int = 0
    average: float = 0.0


@dataclass(frozen=True)
class EarningsSummary:
    periods: Dict[str, EarningsStats] = field(default_factory=dict)
    total_delivery_fees: float = 0.0
    total_tips: float = 0.0

    @property
    def total_earnings(self) -> float:
        return self.total_delivery_fees + self.total_tips


def _as_utc(moment: datetime) -> pd.Timestamp:
    stamp = pd.Timestamp(moment)
    if stamp.tzinfo is None:
        return stamp.tz_localize("UTC")
    return stamp.tz_convert("UTC")


def _stats(frame: pd.DataFrame) -> EarningsStats:
    count = int(len(frame))
    if count == 0:
        return EarningsStats()
    total = float(frame["earnings"].sum())
    return EarningsStats(total=total, count=count, average=total / count)


def summarize_earnings(history: Sequence[Order], now: Optional[datetime] = None) -> EarningsSummary:
    """
    Aggregate history by period. Timestamps are compared in UTC; orders
    without a parsable created_at only count towards "all".
    """
    if not history:
        return EarningsSummary(periods={period: EarningsStats() for period in PERIODS})

    now_utc = _as_utc(now or datetime.now(timezone.utc))

    frame = pd.DataFrame(
        {
            "delivery_fee": [order.delivery_fee for order in history],
            "tip": [order.tip for order in history],
            "created_at": pd.to_datetime(
                [order.created_at for order in history], utc=True, errors="coerce", format="ISO8601"
            ),
        }
    )
    frame["earnings"] = frame["delivery_fee"] + frame["tip"]

    dated = frame.dropna(subset=["created_at"])
    today_mask = dated["created_at"].dt.date == now_utc.date()
    week_mask = dated["created_at"] >= now_utc - timedelta(days=7)
    month_mask = (dated["created_at"].dt.month == now_utc.month) & (
        dated["created_at"].dt.year == now_utc.year
    )

    periods = {
        "today": _stats(dated[today_mask]),
        "week": _stats(dated[week_mask]),
        "month": _stats(dated[month_mask]),
        "all": _stats(frame),
    }

    return EarningsSummary(
        periods=periods,
        total_delivery_fees=float(frame["delivery_fee"].sum()),
        total_tips=float(frame["tip"].sum()),
    )
