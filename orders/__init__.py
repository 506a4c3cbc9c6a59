"""
Purpose: Package entry + stable exports.
What it does:

Marks orders as a Python package.

Re-exports the public API so other modules can do:

from orders import Order, OrderStatus, CacheStore

Should not contain business logic.

Public API:
- Domain models: Order, OrderStatus, LatLng, extract_number, to_point
- REST cache: CacheStore, CacheKey, CacheEntry
- Earnings: summarize_earnings, EarningsSummary
"""
from .models import LatLng, Order, OrderStatus, extract_number, orders_from_payloads, to_point
from .cache import CacheEntry, CacheKey, CacheStore
from .earnings import EarningsStats, EarningsSummary, summarize_earnings

__all__ = ["Order",
           "OrderStatus",
             "LatLng",
               "extract_number",
               "to_point",
               "orders_from_payloads",
               "CacheStore",
               "CacheKey",
               "CacheEntry",
               "summarize_earnings",
               "EarningsSummary",
               "EarningsStats",
               ]
