from __future__ import annotations

from typing import Callable, Iterable, Iterator, Optional

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.core import GaugeMetricFamily, Metric
from prometheus_client.registry import Collector

from tankerprice.api.price_store import PriceStore
from tankerprice.schemas.core import FUEL_TYPES, Snapshot, StationPrice


STATION_LABELS = ["id", "name", "brand"]

_FUEL_HELP = {
    "diesel": "Price of one liter diesel",
    "e5": "Price of one liter super E5",
    "e10": "Price of one liter super E10",
}


def _labels(station: StationPrice) -> list[str]:
    return [station.station_id, station.name, station.brand]


class SnapshotCollector(Collector):
    """
    Renders the current `PriceStore` snapshot as gauges at scrape time.

    One sample per (station, fuel type) with a price; stations without a price
    for a fuel type get no sample for it. Nothing is emitted before the first
    successful fetch.
    """

    def __init__(self, store: PriceStore, namespace: str, *, station_details: bool = False) -> None:
        self._store = store
        self._namespace = namespace
        self._station_details = station_details

    def _name(self, suffix: str) -> str:
        return f"{self._namespace}_{suffix}"

    def _fuel_families(self, snapshot: Snapshot) -> Iterator[Metric]:
        for fuel_type in FUEL_TYPES:
            family = GaugeMetricFamily(
                self._name(fuel_type),
                _FUEL_HELP[fuel_type],
                labels=STATION_LABELS,
            )
            for station in snapshot.stations:
                price = station.price(fuel_type)
                if price is not None:
                    family.add_metric(_labels(station), price)
            if family.samples:
                yield family

    def _detail_family(
        self,
        suffix: str,
        documentation: str,
        stations: Iterable[StationPrice],
        value_fn: Callable[[StationPrice], Optional[float]],
    ) -> Optional[Metric]:
        family = GaugeMetricFamily(self._name(suffix), documentation, labels=STATION_LABELS)
        for station in stations:
            value = value_fn(station)
            if value is not None:
                family.add_metric(_labels(station), value)
        return family if family.samples else None

    def _detail_families(self, snapshot: Snapshot) -> Iterator[Metric]:
        details = [
            (
                "is_open",
                "Is the station currently open?",
                lambda s: None if s.is_open is None else (1.0 if s.is_open else 0.0),
            ),
            ("distance_km", "Distance from the search location", lambda s: s.dist_km),
            ("location_lat", "Latitude of the station", lambda s: s.location.lat if s.location else None),
            ("location_long", "Longitude of the station", lambda s: s.location.lon if s.location else None),
        ]
        for suffix, documentation, value_fn in details:
            family = self._detail_family(suffix, documentation, snapshot.stations, value_fn)
            if family is not None:
                yield family

    def collect(self) -> Iterable[Metric]:
        # One read per scrape; every family below comes from the same snapshot.
        snapshot = self._store.read()
        fetched_at = snapshot.fetched_at
        if fetched_at is None:
            return

        yield from self._fuel_families(snapshot)
        if self._station_details:
            yield from self._detail_families(snapshot)

        update = GaugeMetricFamily(self._name("update"), "Time of the last successful update (unix seconds)")
        update.add_metric([], fetched_at.timestamp())
        yield update

    def describe(self) -> Iterable[Metric]:
        # Families depend on the snapshot; skip the registry's duplicate-name check.
        return []


def build_registry(store: PriceStore, namespace: str, *, station_details: bool = False) -> CollectorRegistry:
    registry = CollectorRegistry(auto_describe=False)
    registry.register(SnapshotCollector(store, namespace, station_details=station_details))
    return registry


def render_metrics(registry: CollectorRegistry) -> tuple[bytes, str]:
    return generate_latest(registry), CONTENT_TYPE_LATEST
