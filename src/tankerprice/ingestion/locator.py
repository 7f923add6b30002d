from __future__ import annotations

import logging
import re
from typing import Any, Optional

import requests

from tankerprice.config.models import GeocodingSettings
from tankerprice.schemas.core import Coordinate
from tankerprice.utils.cache import GeocodeCache


logger = logging.getLogger(__name__)


class LocationError(RuntimeError):
    pass


class LocationNotFound(LocationError):
    pass


class GeocodingUnavailable(LocationError):
    pass


_NUM = r"\d+(?:\.\d+)?"

_DECIMAL_RE = re.compile(
    rf"^(?P<lat>[+-]?{_NUM})\s*[,./]\s*(?P<lon>[+-]?{_NUM})$"
)

# 52°31'12"N 13°24'18"E; minutes and seconds are optional.
_SEXAGESIMAL_RE = re.compile(
    rf"^(?P<lat_deg>{_NUM})°\s*"
    rf"(?:(?P<lat_min>{_NUM})['′]\s*)?"
    rf"(?:(?P<lat_sec>{_NUM})(?:\"|″|'')\s*)?"
    r"(?P<ns>N|S|NORTH|SOUTH)[\s,]*"
    rf"(?P<lon_deg>{_NUM})°\s*"
    rf"(?:(?P<lon_min>{_NUM})['′]\s*)?"
    rf"(?:(?P<lon_sec>{_NUM})(?:\"|″|'')\s*)?"
    r"(?P<ew>E|W|EAST|WEST)$"
)


def sexagesimal_to_decimal(degrees: float, minutes: Optional[float] = None, seconds: Optional[float] = None) -> float:
    return degrees + (minutes or 0.0) / 60.0 + (seconds or 0.0) / 3600.0


def _opt_float(value: Optional[str]) -> Optional[float]:
    return None if value is None else float(value)


def _checked(lat: float, lon: float, *, text: str) -> Coordinate:
    try:
        return Coordinate(lat=lat, lon=lon)
    except ValueError as exc:
        raise LocationNotFound(f"Location {text!r} is not a valid coordinate: {exc}") from exc


def parse_coordinate(text: str) -> Optional[Coordinate]:
    """
    Parse `text` as a coordinate pair, or return None when it is not one.

    Accepted formats (case-insensitive):
      - decimal degrees "lat,lon" (separator `,`, `/` or `.`), e.g. "52.52, 13.405"
      - degrees/minutes/seconds, e.g. `52°31'12"N 13°24'18"E` or `48°N 11.5°E`
    """

    loc = text.strip().upper()

    m = _DECIMAL_RE.match(loc)
    if m is not None:
        return _checked(float(m.group("lat")), float(m.group("lon")), text=text)

    m = _SEXAGESIMAL_RE.match(loc)
    if m is not None:
        lat = sexagesimal_to_decimal(
            float(m.group("lat_deg")), _opt_float(m.group("lat_min")), _opt_float(m.group("lat_sec"))
        )
        lon = sexagesimal_to_decimal(
            float(m.group("lon_deg")), _opt_float(m.group("lon_min")), _opt_float(m.group("lon_sec"))
        )
        if m.group("ns").startswith("S"):
            lat = -lat
        if m.group("ew").startswith("W"):
            lon = -lon
        return _checked(lat, lon, text=text)

    return None


class NominatimClient:
    """
    Free-text geocoding via the OpenStreetMap Nominatim search API.

    Only the first match is used. Successful lookups are cached on disk when a
    cache is given, so restarts do not hit Nominatim again.
    """

    def __init__(
        self,
        *,
        settings: GeocodingSettings,
        cache: Optional[GeocodeCache] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._settings = settings
        self._cache = cache
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": settings.user_agent})

    def search(self, query: str) -> list[dict[str, Any]]:
        try:
            resp = self._session.get(
                self._settings.url,
                params={"format": "json", "q": query, "limit": 1},
                timeout=self._settings.timeout_s,
            )
        except requests.RequestException as exc:
            raise GeocodingUnavailable(f"Nominatim request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise GeocodingUnavailable(f"Nominatim request failed ({resp.status_code}): {resp.text[:500]}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise GeocodingUnavailable(f"Nominatim returned a non-JSON body: {resp.text[:200]}") from exc
        if not isinstance(data, list):
            raise GeocodingUnavailable(f"Unexpected Nominatim response type: {type(data).__name__}")
        return data

    def geocode(self, query: str) -> Coordinate:
        if self._cache is not None:
            cached = self._cache.get_coordinate(self._settings.url, query)
            if cached is not None:
                logger.info("Using cached coordinates for %r", query)
                return cached

        matches = self.search(query)
        if not matches:
            raise LocationNotFound(f"Location {query!r} could not be resolved")

        first = matches[0]
        try:
            coordinate = Coordinate(lat=float(first["lat"]), lon=float(first["lon"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise LocationNotFound(f"Nominatim match for {query!r} has no usable coordinates: {first}") from exc

        if self._cache is not None:
            self._cache.set_coordinate(self._settings.url, query, coordinate)
        return coordinate

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "NominatimClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def resolve_location(location: str, *, geocoder: Optional[NominatimClient] = None) -> Coordinate:
    """
    Turn the configured location into coordinates.

    Coordinate strings are used as-is and never reach the geocoder; anything else is
    looked up via Nominatim (a default client is created when none is given).
    """

    text = (location or "").strip()
    if not text:
        raise LocationNotFound("Location must not be empty")

    parsed = parse_coordinate(text)
    if parsed is not None:
        return parsed

    if geocoder is not None:
        return geocoder.geocode(text)
    with NominatimClient(settings=GeocodingSettings()) as client:
        return client.geocode(text)
