from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import threading
from typing import Optional

from tankerprice.schemas.core import Snapshot


@dataclass(frozen=True)
class RefreshError:
    kind: str
    message: str
    at_utc: datetime


@dataclass(frozen=True)
class RefreshStatus:
    refresh_count: int = 0
    failure_count: int = 0
    last_error: Optional[RefreshError] = None


class PriceStore:
    """
    Latest price snapshot shared between the refresh thread and scrape handlers.

    - Snapshots are immutable; `write` publishes a new one by rebinding a single
      attribute, so a reader sees either the old or the new snapshot.
    - Reads take no lock. The lock only serializes writers with each other.
    """

    def __init__(self) -> None:
        self._snapshot: Snapshot = Snapshot.empty()
        self._status: RefreshStatus = RefreshStatus()
        self._write_lock = threading.Lock()

    def read(self) -> Snapshot:
        return self._snapshot

    def write(self, snapshot: Snapshot) -> None:
        if not isinstance(snapshot, Snapshot):
            raise TypeError(f"Expected Snapshot, got {type(snapshot).__name__}")
        with self._write_lock:
            self._snapshot = snapshot
            prev = self._status
            self._status = RefreshStatus(
                refresh_count=prev.refresh_count + 1,
                failure_count=prev.failure_count,
                last_error=None,
            )

    def record_failure(self, error: RefreshError) -> None:
        # The snapshot is left alone; stale prices beat no prices.
        with self._write_lock:
            prev = self._status
            self._status = RefreshStatus(
                refresh_count=prev.refresh_count,
                failure_count=prev.failure_count + 1,
                last_error=error,
            )

    @property
    def status(self) -> RefreshStatus:
        return self._status
