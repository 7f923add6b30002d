from __future__ import annotations

from datetime import datetime, timezone
import logging
import threading
import time

import pytest

from tankerprice.api.price_store import PriceStore
from tankerprice.api.refresher import RefreshLoop
from tankerprice.ingestion.tankerkoenig import ApiRejected, MalformedResponse, UpstreamError
from tankerprice.schemas.core import Snapshot, StationPrice


FIXED_NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _stations(*ids: str) -> list[StationPrice]:
    return [StationPrice(station_id=i, name=i, brand="B", prices={"diesel": 1.5}) for i in ids]


def test_successful_cycle_publishes_snapshot() -> None:
    store = PriceStore()
    loop = RefreshLoop(lambda: _stations("a", "b"), store, interval_s=60, now_fn=lambda: FIXED_NOW)

    assert loop.run_once() is True

    snap = store.read()
    assert snap.is_populated
    assert snap.fetched_at == FIXED_NOW
    assert [s.station_id for s in snap.stations] == ["a", "b"]


@pytest.mark.parametrize(
    "error",
    [UpstreamError("timeout"), MalformedResponse("not json"), ApiRejected("bad key", api_message="bad key")],
)
def test_failed_cycle_leaves_store_unchanged(error, caplog) -> None:
    store = PriceStore()
    before = Snapshot(stations=tuple(_stations("old")), fetched_at=FIXED_NOW)
    store.write(before)

    def failing():
        raise error

    loop = RefreshLoop(failing, store, interval_s=60)
    with caplog.at_level(logging.ERROR, logger="tankerprice.api.refresher"):
        assert loop.run_once() is False

    assert store.read() is before
    assert store.status.failure_count == 1
    assert store.status.last_error is not None
    assert store.status.last_error.kind == error.kind
    assert f"Update failed ({error.kind})" in caplog.text


def test_failure_before_first_fetch_keeps_sentinel() -> None:
    store = PriceStore()

    def failing():
        raise UpstreamError("connection refused")

    RefreshLoop(failing, store, interval_s=60).run_once()

    assert store.read() == Snapshot.empty()


def test_unexpected_exception_is_absorbed() -> None:
    store = PriceStore()

    def buggy():
        raise KeyError("boom")

    assert RefreshLoop(buggy, store, interval_s=60).run_once() is False
    assert store.status.last_error is not None
    assert store.status.last_error.kind == "unexpected"


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        RefreshLoop(lambda: [], PriceStore(), interval_s=0)


def test_loop_fetches_immediately_and_stops() -> None:
    store = PriceStore()
    fetched = threading.Event()

    def fetch():
        fetched.set()
        return _stations("a")

    loop = RefreshLoop(fetch, store, interval_s=3600)
    loop.start()
    try:
        assert fetched.wait(2.0)
    finally:
        loop.stop(timeout_s=2.0)

    assert not loop.is_running
    assert store.read().is_populated


def test_fetches_never_overlap() -> None:
    store = PriceStore()
    lock = threading.Lock()
    active = 0
    max_active = 0
    calls = 0

    def slow_fetch():
        nonlocal active, max_active, calls
        with lock:
            active += 1
            calls += 1
            max_active = max(max_active, active)
        # Fetch takes longer than the interval; ticks must not pile up behind it.
        time.sleep(0.05)
        with lock:
            active -= 1
        return _stations(str(calls))

    loop = RefreshLoop(slow_fetch, store, interval_s=0.01)
    loop.start()
    time.sleep(0.4)
    loop.stop(timeout_s=2.0)

    assert max_active == 1
    assert 2 <= calls <= 10


def test_loop_keeps_running_after_failures() -> None:
    store = PriceStore()
    results = [UpstreamError("down"), UpstreamError("down"), _stations("late")]
    done = threading.Event()

    def flaky():
        item = results.pop(0) if results else _stations("late")
        if isinstance(item, Exception):
            raise item
        done.set()
        return item

    loop = RefreshLoop(flaky, store, interval_s=0.01)
    loop.start()
    try:
        assert done.wait(2.0)
    finally:
        loop.stop(timeout_s=2.0)

    assert store.read().stations[0].station_id == "late"
    assert store.status.failure_count == 2


def test_start_twice_runs_one_thread() -> None:
    calls = 0
    lock = threading.Lock()

    def fetch():
        nonlocal calls
        with lock:
            calls += 1
        return []

    loop = RefreshLoop(fetch, PriceStore(), interval_s=3600)
    loop.start()
    loop.start()
    time.sleep(0.1)
    loop.stop(timeout_s=2.0)

    assert calls == 1
