from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class AppSettings:
    name: str = "tanker_price"


@dataclass(frozen=True)
class ListenAddress:
    host: str
    port: int

    def __str__(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"


@dataclass(frozen=True)
class ExporterSettings:
    location: str
    radius_km: float
    update_interval_s: int
    namespace: str
    listen: ListenAddress
    station_details: bool = False


@dataclass(frozen=True)
class TankerkoenigSettings:
    api_key: str
    base_url: str = "https://creativecommons.tankerkoenig.de"
    timeout_s: float = 30.0
    user_agent: str = "tanker_price/0.1.0"


@dataclass(frozen=True)
class GeocodingSettings:
    url: str = "https://nominatim.openstreetmap.org/search"
    timeout_s: float = 30.0
    user_agent: str = "tanker_price/0.1.0"
    cache_dir: Optional[Path] = None
    cache_ttl_seconds: int = 0


@dataclass(frozen=True)
class LoggingSettings:
    level: str
    format: str
    file: Optional[Path] = None


@dataclass(frozen=True)
class AppConfig:
    app: AppSettings
    exporter: ExporterSettings
    tankerkoenig: TankerkoenigSettings
    geocoding: GeocodingSettings
    logging: LoggingSettings
