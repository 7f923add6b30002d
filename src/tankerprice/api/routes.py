from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse
from prometheus_client import CollectorRegistry

from tankerprice.api.metrics import render_metrics
from tankerprice.api.price_store import PriceStore
from tankerprice.api.schemas import ExporterStatusOut, LocationOut, RefreshErrorOut
from tankerprice.config.models import AppConfig
from tankerprice.schemas.core import Coordinate


router = APIRouter()


# Dependency providers: everything lives on `app.state`, wired once in `create_app`.
def get_registry(request: Request) -> CollectorRegistry:
    return request.app.state.registry  # type: ignore[attr-defined]


def get_store(request: Request) -> PriceStore:
    return request.app.state.price_store  # type: ignore[attr-defined]


def get_app_config(request: Request) -> AppConfig:
    return request.app.state.config  # type: ignore[attr-defined]


def get_coordinate(request: Request) -> Coordinate:
    return request.app.state.coordinate  # type: ignore[attr-defined]


@router.get("/", include_in_schema=False)
def index() -> RedirectResponse:
    return RedirectResponse(url="/metrics", status_code=308)


# Sync handler: FastAPI runs it in the threadpool, so concurrent scrapes read the store in parallel.
# An empty store renders an empty body with 200; scrapes never fail because the first fetch is pending.
@router.get("/metrics")
def metrics(registry: CollectorRegistry = Depends(get_registry)) -> Response:
    body, content_type = render_metrics(registry)
    return Response(content=body, media_type=content_type)


@router.get("/status", response_model=ExporterStatusOut)
def status(
    store: PriceStore = Depends(get_store),
    config: AppConfig = Depends(get_app_config),
    coordinate: Coordinate = Depends(get_coordinate),
) -> ExporterStatusOut:
    snapshot = store.read()
    refresh = store.status
    last_error = None
    if refresh.last_error is not None:
        last_error = RefreshErrorOut(
            kind=refresh.last_error.kind,
            message=refresh.last_error.message,
            at_utc=refresh.last_error.at_utc,
        )
    return ExporterStatusOut(
        now_utc=datetime.now(timezone.utc),
        populated=snapshot.is_populated,
        station_count=len(snapshot),
        fetched_at_utc=snapshot.fetched_at,
        refresh_count=refresh.refresh_count,
        failure_count=refresh.failure_count,
        last_error=last_error,
        location=LocationOut(lat=coordinate.lat, lon=coordinate.lon),
        radius_km=config.exporter.radius_km,
        update_interval_s=config.exporter.update_interval_s,
        namespace=config.exporter.namespace,
    )
