from __future__ import annotations

from datetime import datetime, timezone
import logging
import threading
from typing import Callable, Optional, Sequence

from tankerprice.api.price_store import PriceStore, RefreshError
from tankerprice.ingestion.tankerkoenig import PriceFetchError
from tankerprice.schemas.core import Snapshot, StationPrice


logger = logging.getLogger(__name__)


FetchFn = Callable[[], Sequence[StationPrice]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RefreshLoop:
    """
    Background thread that fetches prices and publishes them into a `PriceStore`.

    - The first fetch runs right after `start()`; afterwards the thread waits
      `interval_s` once the previous fetch has finished, so fetches never overlap
      and missed ticks are not queued.
    - Failures are logged with their classification and leave the store untouched.
      The next attempt happens after the same fixed interval (no backoff).
    """

    def __init__(
        self,
        fetch: FetchFn,
        store: PriceStore,
        *,
        interval_s: float,
        now_fn: Callable[[], datetime] = _utc_now,
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self._fetch = fetch
        self._store = store
        self._interval_s = float(interval_s)
        self._now = now_fn
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._fetching = threading.Event()

    @property
    def store(self) -> PriceStore:
        return self._store

    @property
    def interval_s(self) -> float:
        return self._interval_s

    @property
    def is_fetching(self) -> bool:
        return self._fetching.is_set()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _record_failure(self, kind: str, message: str) -> None:
        self._store.record_failure(RefreshError(kind=kind, message=message, at_utc=self._now()))

    def run_once(self) -> bool:
        """Run one fetch and publish it. Returns True when the store was updated."""

        self._fetching.set()
        try:
            logger.info("Fetching prices...")
            try:
                stations = tuple(self._fetch())
            except PriceFetchError as exc:
                logger.error("Update failed (%s): %s", exc.kind, exc)
                self._record_failure(exc.kind, str(exc))
                return False
            except Exception as exc:
                # Keep the loop alive on bugs too; the traceback goes to the log.
                logger.exception("Update failed (unexpected)")
                self._record_failure("unexpected", repr(exc))
                return False

            self._store.write(Snapshot(stations=stations, fetched_at=self._now()))
            logger.info("Update done: %s stations", len(stations))
            return True
        finally:
            self._fetching.clear()

    def _run(self) -> None:
        logger.info("Refresh loop started (interval=%ss)", self._interval_s)
        while not self._stop.is_set():
            self.run_once()
            # Re-arm only after the fetch above finished; `wait` returns early on stop().
            if self._stop.wait(self._interval_s):
                break
        logger.info("Refresh loop stopped")

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="tankerprice-refresh", daemon=True)
        self._thread.start()

    def stop(self, timeout_s: Optional[float] = None) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout_s)
            if thread.is_alive():
                logger.warning("Refresh thread still busy with a fetch; leaving it to finish as a daemon")
            else:
                self._thread = None
