"""Shared value objects embedded in several entities.

Entities are pydantic models owned by the EntityStore. Snapshot fields
(customer details copied from an upstream record) are plain values, never
live links to the source record.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class CustomerSnapshot(BaseModel):
    """Customer details as they were when copied onto a record."""

    model_config = ConfigDict(frozen=True)

    name: str
    address: str = ""
    contact: str = ""
    email: str = ""


class GeoPoint(BaseModel):
    """Coordinate pair from the capture layer, stored verbatim."""

    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
