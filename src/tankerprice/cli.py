from __future__ import annotations

# `argparse` mirrors the environment variables with short/long flags for ad-hoc runs.
import argparse
import logging
import sys
from typing import Any, Optional, Sequence

from tankerprice.config.loader import ConfigError, load_config
from tankerprice.config.models import AppConfig
from tankerprice.ingestion.locator import LocationError, NominatimClient, resolve_location
from tankerprice.schemas.core import Coordinate
from tankerprice.utils.cache import GeocodeCache
from tankerprice.utils.logging import configure_logging


logger = logging.getLogger(__name__)

EXIT_STARTUP_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tanker-price",
        description=(
            "Prometheus exporter for Tankerkoenig fuel prices around one location. "
            "Every flag can also be set through the environment variable named in its help."
        ),
    )
    parser.add_argument("--config", default=None, help="JSON config file (env: TANKER_PRICE_CONFIG_PATH).")
    parser.add_argument("-l", "--location", default=None, help="Place name or coordinates (env: LOCATION).")
    parser.add_argument("-r", "--radius", default=None, help="Search radius in km, max 25 (env: RADIUS).")
    parser.add_argument("-k", "--tankerkoenig-key", default=None, help="Tankerkoenig API key (env: TANKERKOENIG_KEY).")
    parser.add_argument(
        "-u", "--update-interval", default=None, help="Update interval in seconds (env: UPDATE_INTERVAL)."
    )
    parser.add_argument(
        "-n", "--prometheus-namespace", default=None, help="Metric name prefix (env: PROMETHEUS_NAMESPACE)."
    )
    parser.add_argument("--listen", default=None, help="host:port for the metrics endpoint (env: LISTEN).")
    parser.add_argument(
        "--station-details",
        action="store_true",
        default=None,
        help="Also export is_open/distance/location gauges (env: STATION_DETAILS).",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (env: LOG_LEVEL).")
    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "location": args.location,
        "radius_km": args.radius,
        "api_key": args.tankerkoenig_key,
        "update_interval_s": args.update_interval,
        "namespace": args.prometheus_namespace,
        "listen": args.listen,
        "station_details": args.station_details,
        "log_level": args.log_level,
    }


def resolve_startup_location(config: AppConfig) -> Coordinate:
    cache = None
    if config.geocoding.cache_dir is not None:
        cache = GeocodeCache(config.geocoding.cache_dir, ttl_seconds=config.geocoding.cache_ttl_seconds)
    with NominatimClient(settings=config.geocoding, cache=cache) as geocoder:
        return resolve_location(config.exporter.location, geocoder=geocoder)


def serve(config: AppConfig, coordinate: Coordinate) -> None:
    # Imported here so `--help` and config errors do not pay for the web stack import.
    import uvicorn

    from tankerprice.api.app import create_app

    app = create_app(config, coordinate)
    listen = config.exporter.listen
    logger.info("Starting server on %s", listen)
    uvicorn.run(app, host=listen.host, port=listen.port, log_config=None)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config, overrides=_overrides(args))
    except ConfigError as exc:
        # Logging is not configured yet; make sure the diagnostic is visible.
        logging.basicConfig(level=logging.INFO)
        logger.error("Invalid configuration: %s", exc)
        raise SystemExit(EXIT_STARTUP_ERROR) from None

    configure_logging(config.logging)

    try:
        coordinate = resolve_startup_location(config)
    except LocationError as exc:
        logger.error("Unable to resolve location %r: %s", config.exporter.location, exc)
        raise SystemExit(EXIT_STARTUP_ERROR) from None

    logger.info("Searching at location %s (radius=%skm)", coordinate, config.exporter.radius_km)
    serve(config, coordinate)


if __name__ == "__main__":
    try:
        main(sys.argv[1:])
    except KeyboardInterrupt:
        logger.info("Stopped by user (KeyboardInterrupt).")
