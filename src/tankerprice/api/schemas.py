from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class LocationOut(BaseModel):
    lat: float
    lon: float


class RefreshErrorOut(BaseModel):
    kind: str = Field(..., examples=["upstream", "malformed", "rejected", "unexpected"])
    message: str
    at_utc: datetime


class ExporterStatusOut(BaseModel):
    now_utc: datetime
    populated: bool
    station_count: int
    fetched_at_utc: Optional[datetime] = None
    refresh_count: int = 0
    failure_count: int = 0
    last_error: Optional[RefreshErrorOut] = None
    location: LocationOut
    radius_km: float
    update_interval_s: int
    namespace: str
