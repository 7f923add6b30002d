from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Mapping, Optional


FUEL_TYPES: tuple[str, ...] = ("diesel", "e5", "e10")


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lon: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"Latitude out of range: {self.lat}")
        if not -180.0 <= self.lon <= 180.0:
            raise ValueError(f"Longitude out of range: {self.lon}")

    def __str__(self) -> str:
        return f"{self.lat},{self.lon}"


@dataclass(frozen=True)
class StationPrice:
    station_id: str
    name: str
    brand: str
    prices: Mapping[str, float] = field(default_factory=dict)
    street: Optional[str] = None
    house_number: Optional[str] = None
    post_code: Optional[str] = None
    place: Optional[str] = None
    is_open: Optional[bool] = None
    dist_km: Optional[float] = None
    location: Optional[Coordinate] = None

    def __post_init__(self) -> None:
        # Read-only view so a published snapshot cannot be mutated through a station.
        object.__setattr__(self, "prices", MappingProxyType(dict(self.prices)))

    def price(self, fuel_type: str) -> Optional[float]:
        return self.prices.get(fuel_type)


@dataclass(frozen=True)
class Snapshot:
    stations: tuple[StationPrice, ...] = ()
    fetched_at: Optional[datetime] = None

    @classmethod
    def empty(cls) -> "Snapshot":
        return cls()

    @property
    def is_populated(self) -> bool:
        return self.fetched_at is not None

    def __len__(self) -> int:
        return len(self.stations)
