from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
import tempfile
import time
from typing import Optional

from tankerprice.schemas.core import Coordinate


logger = logging.getLogger(__name__)


class GeocodeCache:
    """
    On-disk cache of geocoded place names, one JSON file per (geocoder url, query).

    Entries look like `{"lat": 52.5, "lon": 13.4, "cached_at": 1700000000.0}`.
    Unreadable, expired or out-of-range entries count as a miss, so the caller
    falls back to a live lookup and overwrites them. A TTL of 0 keeps entries forever.
    """

    def __init__(self, directory: Path, *, ttl_seconds: int = 0) -> None:
        self._dir = Path(directory)
        self._ttl = int(ttl_seconds)
        self._dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, url: str, query: str) -> Path:
        # Case and surrounding whitespace do not change what Nominatim returns.
        raw = json.dumps({"url": url, "q": query.strip().lower()}, sort_keys=True, ensure_ascii=False)
        return self._dir / f"{hashlib.sha256(raw.encode('utf-8')).hexdigest()}.json"

    def get_coordinate(self, url: str, query: str) -> Optional[Coordinate]:
        path = self.path_for(url, query)
        if not path.exists():
            return None
        try:
            entry = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("Ignoring unreadable geocode cache entry %s", path)
            return None
        if not isinstance(entry, dict):
            logger.warning("Ignoring malformed geocode cache entry %s", path)
            return None

        cached_at = entry.get("cached_at")
        if not isinstance(cached_at, (int, float)):
            return None
        if self._ttl > 0 and (time.time() - float(cached_at)) > self._ttl:
            return None

        lat, lon = entry.get("lat"), entry.get("lon")
        if isinstance(lat, bool) or isinstance(lon, bool):
            logger.warning("Ignoring malformed geocode cache entry %s", path)
            return None
        try:
            return Coordinate(lat=float(lat), lon=float(lon))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed geocode cache entry %s", path)
            return None

    def set_coordinate(self, url: str, query: str, coordinate: Coordinate) -> None:
        path = self.path_for(url, query)
        serialized = json.dumps({"lat": coordinate.lat, "lon": coordinate.lon, "cached_at": time.time()})

        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=path.parent) as tmp:
            tmp.write(serialized)
            tmp_path = Path(tmp.name)
        tmp_path.replace(path)
