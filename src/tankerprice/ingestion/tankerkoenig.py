from __future__ import annotations

# `logging` reports each fetch without leaking the API key.
import logging
# Typing helpers keep the boundary between raw JSON dicts and typed records explicit.
from typing import Any, Mapping, Optional

# `requests` performs the HTTP call; failures are mapped onto our own exception types below.
import requests

from tankerprice.config.models import TankerkoenigSettings
from tankerprice.schemas.core import FUEL_TYPES, Coordinate, StationPrice


logger = logging.getLogger(__name__)

LIST_PATH = "json/list.php"


# Base class for every refresh-cycle failure; `kind` is the classification written to the log.
class PriceFetchError(RuntimeError):
    kind = "error"


# Network failure, timeout or a non-2xx HTTP status.
class UpstreamError(PriceFetchError):
    kind = "upstream"


# The body was not the JSON shape the list endpoint documents.
class MalformedResponse(PriceFetchError):
    kind = "malformed"


class ApiRejected(PriceFetchError):
    """
    The provider answered with `"ok": false` (invalid key, radius too large, ...).

    `api_message` is the provider's own explanation when present.
    """

    kind = "rejected"

    def __init__(self, message: str, *, api_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.api_message = api_message


def _price(value: Any) -> Optional[float]:
    # Closed stations report `false`/`null`; both mean "no price", never 0.
    if isinstance(value, bool) or value is None:
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if price > 0 else None


def _opt_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def _opt_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_station(raw: Mapping[str, Any]) -> StationPrice:
    """
    Map one station object of the `list.php` response onto a `StationPrice`.

    Only `id` is mandatory; the other fields degrade to empty/None.
    """

    station_id = raw.get("id")
    if not isinstance(station_id, str) or not station_id.strip():
        raise MalformedResponse(f"Station without a valid id: {str(dict(raw))[:200]}")

    prices: dict[str, float] = {}
    for fuel_type in FUEL_TYPES:
        price = _price(raw.get(fuel_type))
        if price is not None:
            prices[fuel_type] = price

    location: Optional[Coordinate] = None
    lat, lng = _opt_float(raw.get("lat")), _opt_float(raw.get("lng"))
    if lat is not None and lng is not None:
        try:
            location = Coordinate(lat=lat, lon=lng)
        except ValueError:
            location = None

    is_open = raw.get("isOpen")
    return StationPrice(
        station_id=station_id,
        name=_opt_str(raw.get("name")) or "",
        brand=_opt_str(raw.get("brand")) or "",
        prices=prices,
        street=_opt_str(raw.get("street")),
        house_number=_opt_str(raw.get("houseNumber")),
        post_code=_opt_str(raw.get("postCode")),
        place=_opt_str(raw.get("place")),
        is_open=is_open if isinstance(is_open, bool) else None,
        dist_km=_opt_float(raw.get("dist")),
        location=location,
    )


def parse_list_response(data: Any) -> list[StationPrice]:
    """
    Validate a decoded `list.php` body and return its stations in provider order.

    Expected shape (subset):
      {"ok": true, "status": "ok", "stations": [{"id": "...", "diesel": 1.67, ...}, ...]}
    Failure shape:
      {"ok": false, "status": "error", "message": "apikey nicht angegeben, falsch, oder im falschen Format"}
    """

    if not isinstance(data, Mapping):
        raise MalformedResponse(f"Unexpected response type: {type(data).__name__}")

    ok = data.get("ok")
    if not isinstance(ok, bool):
        raise MalformedResponse("Response is missing the `ok` flag")
    if not ok:
        api_message = _opt_str(data.get("message"))
        raise ApiRejected(f"Tankerkoenig rejected the request: {api_message or 'no message'}", api_message=api_message)

    stations = data.get("stations")
    if not isinstance(stations, list):
        raise MalformedResponse("Response is missing the `stations` list")

    out: list[StationPrice] = []
    for raw in stations:
        if not isinstance(raw, Mapping):
            raise MalformedResponse(f"Unexpected station entry type: {type(raw).__name__}")
        out.append(parse_station(raw))
    return out


class TankerkoenigClient:
    """
    Client for the Tankerkoenig "stations in radius" endpoint.

    - One HTTP round-trip per `fetch`; there are no retries inside a call.
    - The session is reused across fetches (keep-alive) and closed via `close()`.
    """

    def __init__(self, *, settings: TankerkoenigSettings, session: Optional[requests.Session] = None) -> None:
        self._settings = settings
        # Normalize `base_url` so the path join never produces a double slash.
        self._url = f"{settings.base_url.rstrip('/')}/{LIST_PATH}"
        self._session = session or requests.Session()
        # A stable User-Agent lets the provider identify the exporter in its logs.
        self._session.headers.update({"User-Agent": settings.user_agent})

    def _redact(self, text: str, api_key: str) -> str:
        # requests puts the full URL (including `apikey=`) into exception messages.
        return text.replace(api_key, "***") if api_key else text

    def _raise_if_rejected(self, resp: requests.Response, api_key: str) -> None:
        try:
            data = resp.json()
        except ValueError:
            return
        if isinstance(data, Mapping) and data.get("ok") is False:
            api_message = _opt_str(data.get("message"))
            if api_message:
                api_message = self._redact(api_message, api_key)
            raise ApiRejected(
                f"Tankerkoenig rejected the request ({resp.status_code}): {api_message or 'no message'}",
                api_message=api_message,
            )

    def fetch(self, coords: Coordinate, radius_km: float, api_key: str) -> list[StationPrice]:
        params = {
            "lat": coords.lat,
            "lng": coords.lon,
            "rad": radius_km,
            "type": "all",
            "apikey": api_key,
        }
        try:
            resp = self._session.get(self._url, params=params, timeout=self._settings.timeout_s)
        except requests.RequestException as exc:
            raise UpstreamError(self._redact(f"Tankerkoenig request failed: {exc}", api_key)) from None

        # The provider answers a bad key with a 4xx and its usual `{"ok": false, "message": ...}` body.
        # Any other 4xx/5xx is an upstream failure; the next scheduled tick is the retry.
        if resp.status_code >= 400:
            self._raise_if_rejected(resp, api_key)
            raise UpstreamError(
                self._redact(f"Tankerkoenig request failed ({resp.status_code}): {resp.text[:500]}", api_key)
            )

        try:
            data = resp.json()
        except ValueError:
            raise MalformedResponse(f"Tankerkoenig returned a non-JSON body: {resp.text[:200]!r}") from None

        stations = parse_list_response(data)
        logger.debug("Fetched %s stations around %s (radius=%skm)", len(stations), coords, radius_km)
        return stations

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "TankerkoenigClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
