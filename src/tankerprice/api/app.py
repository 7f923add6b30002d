from __future__ import annotations

from contextlib import asynccontextmanager
import functools
import logging
from typing import AsyncIterator, Optional

# `FastAPI` serves the scrape endpoint; the refresh thread runs alongside uvicorn's event loop.
from fastapi import FastAPI

from tankerprice.api.metrics import build_registry
from tankerprice.api.price_store import PriceStore
from tankerprice.api.refresher import FetchFn, RefreshLoop
from tankerprice.api.routes import router
from tankerprice.config.models import AppConfig
from tankerprice.ingestion.tankerkoenig import TankerkoenigClient
from tankerprice.schemas.core import Coordinate


logger = logging.getLogger(__name__)


# App factory: config and the resolved coordinate go in, a ready-to-serve app comes out.
# `fetch` replaces the Tankerkoenig call (tests); `start_refresher=False` leaves the loop to the caller.
def create_app(
    config: AppConfig,
    coordinate: Coordinate,
    *,
    fetch: Optional[FetchFn] = None,
    store: Optional[PriceStore] = None,
    start_refresher: bool = True,
) -> FastAPI:
    store = store or PriceStore()

    client: Optional[TankerkoenigClient] = None
    if fetch is None:
        client = TankerkoenigClient(settings=config.tankerkoenig)
        fetch = functools.partial(
            client.fetch,
            coordinate,
            config.exporter.radius_km,
            config.tankerkoenig.api_key,
        )

    refresher = RefreshLoop(fetch, store, interval_s=config.exporter.update_interval_s)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if start_refresher:
            refresher.start()
        logger.info("System ready to receive requests")
        try:
            yield
        finally:
            logger.info("Shutting down")
            refresher.stop(timeout_s=5.0)
            if client is not None:
                client.close()

    app = FastAPI(title=config.app.name, lifespan=lifespan)

    # Shared objects live on `app.state`; route dependencies read them from there.
    app.state.config = config
    app.state.coordinate = coordinate
    app.state.price_store = store
    app.state.refresher = refresher
    app.state.registry = build_registry(
        store,
        config.exporter.namespace,
        station_details=config.exporter.station_details,
    )

    app.include_router(router)
    return app
