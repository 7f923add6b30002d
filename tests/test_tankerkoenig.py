from __future__ import annotations

import pytest
import requests

from conftest import FakeResponse, FakeSession
from tankerprice.config.models import TankerkoenigSettings
from tankerprice.ingestion.tankerkoenig import (
    ApiRejected,
    MalformedResponse,
    TankerkoenigClient,
    UpstreamError,
    parse_list_response,
)
from tankerprice.schemas.core import Coordinate


API_KEY = "00000000-0000-0000-0000-000000000002"
CENTER = Coordinate(lat=52.521, lon=13.438)


def _station(**overrides):
    station = {
        "id": "474e5046-deaf-4f9b-9a32-9797b778f047",
        "name": "TOTAL BERLIN",
        "brand": "TOTAL",
        "street": "MARGARETE-SOMMER-STR.",
        "place": "BERLIN",
        "lat": 52.53083,
        "lng": 13.440946,
        "dist": 1.1,
        "diesel": 1.109,
        "e5": 1.339,
        "e10": 1.319,
        "isOpen": True,
        "houseNumber": "2",
        "postCode": 10407,
    }
    station.update(overrides)
    return station


def _client(*responses) -> tuple[TankerkoenigClient, FakeSession]:
    session = FakeSession(*responses)
    client = TankerkoenigClient(settings=TankerkoenigSettings(api_key=API_KEY), session=session)  # type: ignore[arg-type]
    return client, session


def test_fetch_sends_location_radius_and_key() -> None:
    client, session = _client(FakeResponse(payload={"ok": True, "status": "ok", "stations": []}))

    assert client.fetch(CENTER, 4.5, API_KEY) == []

    url, params, timeout = session.calls[0]
    assert url == "https://creativecommons.tankerkoenig.de/json/list.php"
    assert params == {"lat": 52.521, "lng": 13.438, "rad": 4.5, "type": "all", "apikey": API_KEY}
    assert timeout == 30.0


def test_fetch_parses_stations_in_order() -> None:
    payload = {
        "ok": True,
        "status": "ok",
        "stations": [_station(), _station(id="b", name="ARAL", brand="ARAL", diesel=1.2)],
    }
    client, _ = _client(FakeResponse(payload=payload))

    stations = client.fetch(CENTER, 2.0, API_KEY)

    assert [s.station_id for s in stations] == ["474e5046-deaf-4f9b-9a32-9797b778f047", "b"]
    first = stations[0]
    assert first.name == "TOTAL BERLIN"
    assert first.brand == "TOTAL"
    assert dict(first.prices) == {"diesel": 1.109, "e5": 1.339, "e10": 1.319}
    assert first.street == "MARGARETE-SOMMER-STR."
    assert first.house_number == "2"
    assert first.post_code == "10407"
    assert first.place == "BERLIN"
    assert first.is_open is True
    assert first.dist_km == 1.1
    assert first.location == Coordinate(lat=52.53083, lon=13.440946)


@pytest.mark.parametrize("missing", [None, False, 0, "n/a"])
def test_missing_fuel_price_is_absent_not_zero(missing) -> None:
    stations = parse_list_response({"ok": True, "stations": [_station(e5=missing, e10=missing)]})
    assert dict(stations[0].prices) == {"diesel": 1.109}
    assert stations[0].price("e5") is None


def test_fuel_key_missing_entirely() -> None:
    raw = _station()
    del raw["e10"]
    stations = parse_list_response({"ok": True, "stations": [raw]})
    assert "e10" not in stations[0].prices


def test_ok_false_raises_api_rejected_with_message() -> None:
    message = "apikey nicht angegeben, falsch, oder im falschen Format"
    client, _ = _client(FakeResponse(payload={"ok": False, "status": "error", "message": message}))

    with pytest.raises(ApiRejected) as excinfo:
        client.fetch(CENTER, 2.0, API_KEY)

    assert excinfo.value.api_message == message
    assert excinfo.value.kind == "rejected"


def test_http_error_raises_upstream_error() -> None:
    client, _ = _client(FakeResponse(status_code=502, text="bad gateway"))
    with pytest.raises(UpstreamError):
        client.fetch(CENTER, 2.0, API_KEY)


def test_http_error_with_rejection_body_raises_api_rejected() -> None:
    body = {"ok": False, "status": "error", "message": f"apikey {API_KEY} ist gesperrt"}
    client, _ = _client(FakeResponse(status_code=403, payload=body))

    with pytest.raises(ApiRejected) as excinfo:
        client.fetch(CENTER, 2.0, API_KEY)

    assert excinfo.value.kind == "rejected"
    assert API_KEY not in str(excinfo.value)
    assert excinfo.value.api_message == "apikey *** ist gesperrt"


@pytest.mark.parametrize("payload", [{"ok": True, "stations": []}, {"error": "overloaded"}, ["x"]])
def test_http_error_with_other_json_body_stays_upstream(payload) -> None:
    client, _ = _client(FakeResponse(status_code=503, payload=payload))
    with pytest.raises(UpstreamError):
        client.fetch(CENTER, 2.0, API_KEY)


def test_connection_error_is_upstream_and_redacts_key() -> None:
    err = requests.ConnectionError(f"HTTPSConnectionPool: Max retries exceeded with url: /json/list.php?apikey={API_KEY}")
    client, _ = _client(err)

    with pytest.raises(UpstreamError) as excinfo:
        client.fetch(CENTER, 2.0, API_KEY)

    assert API_KEY not in str(excinfo.value)
    assert excinfo.value.kind == "upstream"


def test_timeout_is_upstream_error() -> None:
    client, _ = _client(requests.Timeout("read timed out"))
    with pytest.raises(UpstreamError):
        client.fetch(CENTER, 2.0, API_KEY)


def test_non_json_body_is_malformed() -> None:
    client, _ = _client(FakeResponse(status_code=200, payload=None, text="<html>maintenance</html>"))
    with pytest.raises(MalformedResponse) as excinfo:
        client.fetch(CENTER, 2.0, API_KEY)
    assert excinfo.value.kind == "malformed"


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"status": "ok", "stations": []},
        {"ok": True, "status": "ok"},
        {"ok": True, "stations": {"id": "x"}},
        {"ok": True, "stations": ["x"]},
        {"ok": True, "stations": [{"name": "no id"}]},
    ],
)
def test_unexpected_shapes_are_malformed(payload) -> None:
    with pytest.raises(MalformedResponse):
        parse_list_response(payload)


def test_close_closes_session() -> None:
    client, session = _client()
    with client:
        pass
    assert session.closed
