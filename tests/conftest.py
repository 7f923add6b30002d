from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Optional

import pytest


def pytest_configure() -> None:
    """
    Keep a `src/` layout while allowing `pytest` to run without requiring an editable install.
    """

    project_root = Path(__file__).resolve().parents[1]
    src_path = project_root / "src"
    sys.path.insert(0, str(src_path))


_ENV_VARS = (
    "LOCATION",
    "RADIUS",
    "TANKERKOENIG_KEY",
    "UPDATE_INTERVAL",
    "PROMETHEUS_NAMESPACE",
    "LISTEN",
    "STATION_DETAILS",
    "TANKERKOENIG_BASE_URL",
    "TANKERKOENIG_TIMEOUT",
    "NOMINATIM_URL",
    "NOMINATIM_TIMEOUT",
    "GEOCODE_CACHE_DIR",
    "LOG_LEVEL",
    "LOG_FILE",
    "TANKER_PRICE_CONFIG_PATH",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    # Settings are read from the environment; a developer's shell must not leak into tests.
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: Optional[str] = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else ("" if payload is None else repr(payload))

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    """Stands in for `requests.Session`; records calls and replays queued responses or errors."""

    def __init__(self, *responses: Any) -> None:
        self.headers: dict[str, str] = {}
        self.calls: list[tuple[str, dict[str, Any], Any]] = []
        self._responses = list(responses)
        self.closed = False

    def get(self, url: str, *, params=None, timeout=None):  # type: ignore[no-untyped-def]
        self.calls.append((url, dict(params or {}), timeout))
        item = self._responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_session():
    return FakeSession
