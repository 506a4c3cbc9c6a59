"""
Purpose: Core data models for the courier (driver) side.
What it does:
Defines the position samples coming from the geolocation source and the
courier profile that is stamped onto every realtime-store record.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class PositionSample:
    """
    One sample from the geolocation source.
    timestamp is epoch milliseconds, as the device reports it.
    """
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    timestamp: Optional[float] = None

    @classmethod
    def new(
        cls,
        latitude: float,
        longitude: float,
        accuracy: Optional[float] = None,
        timestamp: Optional[float] = None,
    ) -> PositionSample:
        return cls(
            latitude=float(latitude),
            longitude=float(longitude),
            accuracy=accuracy,
            timestamp=timestamp if timestamp is not None else time.time() * 1000,
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class CourierProfile:
    """
    The authenticated courier. Only the fields the tracking records need.
    """
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    delivery_method: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return "Unknown User"

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.display_name,
            "phone": self.phone or "N/A",
            "deliveryMethod": self.delivery_method or "N/A",
        }

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any]) -> CourierProfile:
        courier_id = raw.get("_id") or raw.get("id") or raw.get("userId")
        if not courier_id:
            raise ValueError("Courier payload has no identifier")
        return cls(
            id=str(courier_id),
            first_name=raw.get("firstName"),
            last_name=raw.get("lastName"),
            phone=raw.get("phone"),
            delivery_method=raw.get("deliveryMethod"),
        )
