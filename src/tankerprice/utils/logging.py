from __future__ import annotations

import logging
from typing import Optional

from tankerprice.config.models import LoggingSettings


# Libraries that log every request at INFO/DEBUG; one line per scrape or fetch is noise for an exporter.
_CHATTY_LOGGERS = ("urllib3", "uvicorn.access")


def configure_logging(settings: LoggingSettings) -> None:
    level = getattr(logging, settings.level.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Invalid log level: {settings.level}")

    handlers: Optional[list[logging.Handler]] = None
    if settings.file is not None:
        settings.file.parent.mkdir(parents=True, exist_ok=True)
        handlers = [logging.FileHandler(settings.file, encoding="utf-8"), logging.StreamHandler()]

    logging.basicConfig(level=level, format=settings.format, handlers=handlers)

    if level > logging.DEBUG:
        for name in _CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(max(level, logging.WARNING))
