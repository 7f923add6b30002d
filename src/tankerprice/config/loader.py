from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Mapping, Optional

from tankerprice.config.models import (
    AppConfig,
    AppSettings,
    ExporterSettings,
    GeocodingSettings,
    ListenAddress,
    LoggingSettings,
    TankerkoenigSettings,
)


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/default.json"
MAX_RADIUS_KM = 25.0
MIN_RECOMMENDED_INTERVAL_S = 5 * 60

_NAMESPACE_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}


class ConfigError(ValueError):
    pass


def load_dotenv_if_available(path: str = ".env") -> None:
    try:
        from dotenv import load_dotenv  # type: ignore
    except ModuleNotFoundError:
        return
    load_dotenv(path)


def _as_path(value: str, *, base_dir: Path) -> Path:
    candidate = Path(value)
    return candidate if candidate.is_absolute() else (base_dir / candidate)


def _parse_bool(val: object, *, name: str) -> bool:
    if isinstance(val, bool):
        return val
    s = str(val).strip().lower()
    if s in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "f", "no", "n", "off"}:
        return False
    raise ConfigError(f"{name} must be a boolean, got {val!r}")


def validate_radius(value: object) -> float:
    try:
        radius = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ConfigError(f"The radius {value!r} is not a valid floating point number") from None
    if radius != radius or radius <= 0:
        raise ConfigError(f"The radius {radius} must be greater than 0")
    if radius > MAX_RADIUS_KM:
        raise ConfigError(
            f"The radius {radius} is larger than {MAX_RADIUS_KM:g}km, which the Tankerkoenig API "
            f"does not allow. Please choose a radius <= {MAX_RADIUS_KM:g}."
        )
    return radius


def validate_update_interval(value: object) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"The update interval {value!r} is not a valid integer")
    try:
        interval = int(str(value).strip())
    except ValueError:
        raise ConfigError(f"The update interval {value!r} is not a valid integer") from None
    if interval <= 0:
        raise ConfigError(f"The update interval {interval} must be greater than 0 seconds")
    if interval < MIN_RECOMMENDED_INTERVAL_S:
        logger.warning(
            "Update interval %ss is shorter than five minutes; the Tankerkoenig terms ask for at least %ss.",
            interval,
            MIN_RECOMMENDED_INTERVAL_S,
        )
    return interval


def validate_namespace(value: object) -> str:
    namespace = str(value or "").strip()
    if not namespace:
        raise ConfigError("The metrics namespace must not be empty")
    if not _NAMESPACE_RE.match(namespace):
        raise ConfigError(f"The metrics namespace {namespace!r} is not a valid Prometheus metric name")
    return namespace


def parse_listen(value: object) -> ListenAddress:
    raw = str(value or "").strip()
    m = re.match(r"^\[(?P<v6>[^\]]+)\]:(?P<port>\d+)$", raw) or re.match(
        r"^(?P<host>[^:\[\]]+):(?P<port>\d+)$", raw
    )
    if m is None:
        raise ConfigError(f"The listen address {raw!r} must look like host:port")
    port = int(m.group("port"))
    if not 0 < port < 65536:
        raise ConfigError(f"The listen port {port} is out of range")
    host = m.groupdict().get("v6") or m.groupdict().get("host") or ""
    return ListenAddress(host=host, port=port)


def _require_text(value: object, *, name: str) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ConfigError(f"Missing required setting: {name}")
    return text


def _positive_float(value: object, *, name: str) -> float:
    try:
        out = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}") from None
    if not out > 0:
        raise ConfigError(f"{name} must be greater than 0, got {out}")
    return out


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Config section `{name}` must be a JSON object, got {type(value).__name__}")
    return value


def _non_negative_int(value: object, *, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    try:
        out = int(str(value).strip())
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None
    if out < 0:
        raise ConfigError(f"{name} must be >= 0, got {out}")
    return out


def _layered(
    key: str,
    *,
    raw: Mapping[str, Any],
    env: Optional[str],
    overrides: Mapping[str, Any],
    default: Any = None,
) -> Any:
    # CLI override > environment > JSON file > default
    if overrides.get(key) is not None:
        return overrides[key]
    if env:
        env_value = os.getenv(env)
        if env_value is not None and env_value.strip() != "":
            return env_value
    if raw.get(key) is not None:
        return raw[key]
    return default


def load_config(
    path: Optional[str | Path] = None,
    *,
    base_dir: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> AppConfig:
    """
    Load and validate the exporter config.

    Settings come from (highest precedence first) `overrides` (CLI flags), environment
    variables, the JSON file at `path` / `TANKER_PRICE_CONFIG_PATH` / `config/default.json`,
    and built-in defaults. A missing default file is fine; a missing explicit file is not.
    """

    load_dotenv_if_available()

    overrides = dict(overrides or {})
    base_dir = (base_dir or Path.cwd()).resolve()

    explicit = path or os.getenv("TANKER_PRICE_CONFIG_PATH")
    config_path = _as_path(str(explicit or DEFAULT_CONFIG_PATH), base_dir=base_dir)
    raw: Mapping[str, Any] = {}
    if config_path.exists():
        try:
            raw = json.loads(config_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Config file {config_path} is not valid JSON: {exc}") from exc
        if not isinstance(raw, Mapping):
            raise ConfigError(f"Config file {config_path} must contain a JSON object")
    elif explicit:
        raise ConfigError(f"Config file not found: {config_path}")

    app_raw: Mapping[str, Any] = _section(raw, "app")
    app = AppSettings(name=str(app_raw.get("name", "tanker_price")))

    exporter_raw: Mapping[str, Any] = _section(raw, "exporter")
    exporter = ExporterSettings(
        location=_require_text(
            _layered("location", raw=exporter_raw, env="LOCATION", overrides=overrides),
            name="location",
        ),
        radius_km=validate_radius(
            _layered("radius_km", raw=exporter_raw, env="RADIUS", overrides=overrides, default=2.0)
        ),
        update_interval_s=validate_update_interval(
            _layered(
                "update_interval_s", raw=exporter_raw, env="UPDATE_INTERVAL", overrides=overrides, default=300
            )
        ),
        namespace=validate_namespace(
            _layered(
                "namespace",
                raw=exporter_raw,
                env="PROMETHEUS_NAMESPACE",
                overrides=overrides,
                default="tanker_price",
            )
        ),
        listen=parse_listen(
            _layered("listen", raw=exporter_raw, env="LISTEN", overrides=overrides, default="0.0.0.0:9501")
        ),
        station_details=_parse_bool(
            _layered(
                "station_details", raw=exporter_raw, env="STATION_DETAILS", overrides=overrides, default=False
            ),
            name="station_details",
        ),
    )

    tk_raw: Mapping[str, Any] = _section(raw, "tankerkoenig")
    tankerkoenig = TankerkoenigSettings(
        api_key=_require_text(
            _layered("api_key", raw=tk_raw, env="TANKERKOENIG_KEY", overrides=overrides),
            name="tankerkoenig api key",
        ),
        base_url=str(
            _layered(
                "base_url",
                raw=tk_raw,
                env="TANKERKOENIG_BASE_URL",
                overrides={},
                default="https://creativecommons.tankerkoenig.de",
            )
        ).rstrip("/"),
        timeout_s=_positive_float(
            _layered("timeout_s", raw=tk_raw, env="TANKERKOENIG_TIMEOUT", overrides={}, default=30.0),
            name="tankerkoenig.timeout_s",
        ),
    )

    geo_raw: Mapping[str, Any] = _section(raw, "geocoding")
    cache_value = _layered("cache_dir", raw=geo_raw, env="GEOCODE_CACHE_DIR", overrides={})
    geocoding = GeocodingSettings(
        url=str(
            _layered(
                "url",
                raw=geo_raw,
                env="NOMINATIM_URL",
                overrides={},
                default="https://nominatim.openstreetmap.org/search",
            )
        ),
        timeout_s=_positive_float(
            _layered("timeout_s", raw=geo_raw, env="NOMINATIM_TIMEOUT", overrides={}, default=30.0),
            name="geocoding.timeout_s",
        ),
        cache_dir=None if not cache_value else _as_path(str(cache_value), base_dir=base_dir),
        cache_ttl_seconds=_non_negative_int(
            _layered("cache_ttl_seconds", raw=geo_raw, env=None, overrides={}, default=0),
            name="geocoding.cache_ttl_seconds",
        ),
    )

    logging_raw: Mapping[str, Any] = _section(raw, "logging")
    level = str(
        _layered(
            "level",
            raw=logging_raw,
            env="LOG_LEVEL",
            overrides={"level": overrides.get("log_level")},
            default="INFO",
        )
    ).upper()
    if level not in _LOG_LEVELS:
        raise ConfigError(f"Invalid log level: {level}")
    file_value = _layered("file", raw=logging_raw, env="LOG_FILE", overrides={})
    logging_settings = LoggingSettings(
        level=level,
        format=str(logging_raw.get("format", "%(asctime)s %(levelname)s %(name)s - %(message)s")),
        file=None if not file_value else _as_path(str(file_value), base_dir=base_dir),
    )

    return AppConfig(
        app=app,
        exporter=exporter,
        tankerkoenig=tankerkoenig,
        geocoding=geocoding,
        logging=logging_settings,
    )
