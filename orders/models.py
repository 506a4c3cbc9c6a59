"""
Purpose: Domain models for the Orders capability.
What it does:
- Defines core data structures:
- Order (order_id, order_code, pickup/drop-off points, money, status, verification code)
- LatLng (canonical {lat, lng} point used everywhere inside the client)

Defines enums/constants:
- OrderStatus = Cooked | Accepted | PickedUp | InTransit | Delivering | Delivered | Completed

Owns the normalization boundary for backend payloads:
- extract_number: money that may arrive as number, string or {"$numberDecimal": "..."}
- to_point: locations that may arrive as {lat,lng}, {latitude,longitude}, GeoJSON or "lat,lng"

Rule: No network calls, no session state. Models only.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class OrderStatus(str, Enum):
    COOKED = "Cooked"
    ACCEPTED = "Accepted"
    PICKED_UP = "PickedUp"
    IN_TRANSIT = "InTransit"
    DELIVERING = "Delivering"
    DELIVERED = "Delivered"
    COMPLETED = "Completed"

    @classmethod
    def parse(cls, value: Any, default: Optional[OrderStatus] = None) -> Optional[OrderStatus]:
        """
        Case-insensitive lookup. The backend is not consistent about casing
        ("Delivering" vs "delivering"), unknown values fall back to `default`.
        """
        if isinstance(value, OrderStatus):
            return value
        if not isinstance(value, str):
            return default
        wanted = value.strip().lower()
        for status in cls:
            if status.value.lower() == wanted:
                return status
        return default

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.COMPLETED)


# leading float, same prefix rule as a JS parseFloat ("5.50abc" -> 5.5)
_LEADING_FLOAT = re.compile(r"^\s*[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?")


def _parse_float_prefix(text: str) -> float:
    match = _LEADING_FLOAT.match(text)
    if not match:
        return 0.0
    return float(match.group(0))


def extract_number(value: Any) -> float:
    """
    Normalize a monetary value coming from the backend.

    Accepts ints/floats, Decimal, numeric strings and MongoDB Decimal128
    wrappers ({"$numberDecimal": "3.25"}). Anything unparsable, negative or
    non-finite normalizes to 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        number = _parse_float_prefix(value)
    elif isinstance(value, Mapping) and value.get("$numberDecimal") is not None:
        number = _parse_float_prefix(str(value["$numberDecimal"]))
    else:
        return 0.0

    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def _coordinate(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    elif isinstance(value, Mapping) and value.get("$numberDecimal") is not None:
        return _coordinate(str(value["$numberDecimal"]))
    else:
        return None
    return number if math.isfinite(number) else None


@dataclass(frozen=True)
class LatLng:
    """
    Canonical point. Internal code only ever sees this shape.
    """
    lat: float
    lng: float

    def to_geojson(self) -> Dict[str, Any]:
        # GeoJSON is (lng, lat) ordered
        return {"type": "Point", "coordinates": [self.lng, self.lat]}

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


def to_point(raw: Any) -> Optional[LatLng]:
    """
    Single normalization boundary for locations.

    Supported shapes:
        {"lat": .., "lng": ..}            (also "lon")
        {"latitude": .., "longitude": ..}
        {"type": "Point", "coordinates": [lng, lat]}
        {"coordinates": [lng, lat]}
        [lng, lat]                        (bare GeoJSON coordinate pair)
        "lat,lng"                         (comma separated string)

    Returns None when no usable coordinate pair is present.
    """
    if raw is None or isinstance(raw, LatLng):
        return raw

    if isinstance(raw, str):
        parts = [part.strip() for part in raw.split(",")]
        if len(parts) != 2:
            return None
        lat, lng = _coordinate(parts[0]), _coordinate(parts[1])
        if lat is None or lng is None:
            return None
        return LatLng(lat=lat, lng=lng)

    if isinstance(raw, (list, tuple)):
        if len(raw) < 2:
            return None
        lng, lat = _coordinate(raw[0]), _coordinate(raw[1])
        if lat is None or lng is None:
            return None
        return LatLng(lat=lat, lng=lng)

    if not isinstance(raw, Mapping):
        return None

    if "lat" in raw and ("lng" in raw or "lon" in raw):
        lat = _coordinate(raw.get("lat"))
        lng = _coordinate(raw.get("lng", raw.get("lon")))
        if lat is not None and lng is not None:
            return LatLng(lat=lat, lng=lng)

    if "latitude" in raw and "longitude" in raw:
        lat = _coordinate(raw.get("latitude"))
        lng = _coordinate(raw.get("longitude"))
        if lat is not None and lng is not None:
            return LatLng(lat=lat, lng=lng)

    coordinates = raw.get("coordinates")
    if isinstance(coordinates, (list, tuple)):
        return to_point(coordinates)

    return None


def _first_present(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def _id_string(value: Any) -> Optional[str]:
    # populated references arrive as {"_id": "..."}
    if isinstance(value, Mapping):
        value = value.get("_id") or value.get("id")
    if value is None or value == "":
        return None
    return str(value)


def fallback_order_code(order_id: str) -> str:
    return f"ORD-{order_id[-6:]}"


@dataclass(frozen=True)
class Order:
    """
    An order as the courier client sees it.

    Orders are immutable facts from the backend; the only local change is a
    status transition, applied with `with_status` (returns a new instance).
    """
    order_id: str
    order_code: str
    restaurant_location: Optional[LatLng] = None
    destination_location: Optional[LatLng] = None

    delivery_fee: float = 0
    tip: float = 0
    status: OrderStatus = OrderStatus.COOKED
    pick_up_verification_code: Optional[str] = None

    restaurant_name: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    description: Optional[str] = None
    delivery_vehicle: Optional[str] = None
    distance_km: float = 0

    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def total_earnings(self) -> float:
        return self.delivery_fee + self.tip

    def with_status(self, status: OrderStatus) -> Order:
        return replace(self, status=status)

    @classmethod
    def from_payload(
        cls,
        raw: Mapping[str, Any],
        *,
        default_status: OrderStatus = OrderStatus.COOKED,
        order_id: Optional[str] = None,
    ) -> Optional[Order]:
        """
        Build an Order from any of the backend payload shapes.
        Returns None if no identifier can be found.
        """
        if not raw:
            return None

        # some endpoints wrap the order in {"data": {...}}
        data = raw.get("data") if isinstance(raw.get("data"), Mapping) else raw

        resolved_id = order_id or _id_string(_first_present(data, "_id", "id", "orderId"))
        if not resolved_id:
            return None

        order_code = _first_present(data, "orderCode", "code", "order_code")
        status = OrderStatus.parse(_first_present(data, "orderStatus", "status"), default_status)

        destination = _first_present(
            data, "destinationLocation", "deliveryLocation", "deliverLocation", "customerLocation"
        )

        customer = data.get("userId") or data.get("customerId")

        return cls(
            order_id=resolved_id,
            order_code=str(order_code) if order_code else fallback_order_code(resolved_id),
            restaurant_location=to_point(data.get("restaurantLocation")),
            destination_location=to_point(destination),
            delivery_fee=extract_number(_first_present(data, "deliveryFee", "delivery_fee")),
            tip=extract_number(data.get("tip")),
            status=status,
            pick_up_verification_code=_first_present(
                data, "pickUpVerificationCode", "pickUpVerification"
            ),
            restaurant_name=_first_present(data, "restaurantName", "restaurant_name"),
            customer_id=_id_string(customer),
            customer_name=_first_present(data, "userName", "customerName", "user_name"),
            customer_phone=_first_present(data, "phone", "customerPhone", "customer_phone"),
            description=data.get("description") or None,
            delivery_vehicle=data.get("deliveryVehicle") or None,
            distance_km=extract_number(data.get("distanceKm")),
            created_at=_first_present(data, "createdAt", "created_at"),
            updated_at=_first_present(data, "updatedAt", "updated_at"),
        )


def orders_from_payloads(raw_orders: Any, *, default_status: OrderStatus = OrderStatus.COOKED) -> List[Order]:
    """
    Normalize a list payload, skipping entries without an identifier.
    """
    if not isinstance(raw_orders, list):
        return []
    orders: List[Order] = []
    for raw in raw_orders:
        if not isinstance(raw, Mapping):
            continue
        order = Order.from_payload(raw, default_status=default_status)
        if order is not None:
            orders.append(order)
    return orders
