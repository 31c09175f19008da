"""FastAPI routes for the RevenueCat webhook and portfolio reports."""
import logging
from dataclasses import asdict
from datetime import date, datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ..events.ingress import EventIngressService, IngressStatus
from ..metrics.aggregator import TOP_METRICS, PortfolioAggregator
from ..schemas.reports import (
    IngestionLogModel,
    SnapshotResponse,
    TopPerformerModel,
    TopPerformersResponse,
    TrendPointModel,
    TrendsResponse,
)
from ..schemas.revenuecat import WebhookAck
from ..storage.store import MetricsStore
from .auth import require_api_key, verify_webhook_secret


logger = logging.getLogger(__name__)

webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])

router = APIRouter(
    prefix="/api/v1",
    tags=["reports"],
    dependencies=[Depends(require_api_key)],
)


def get_store(request: Request) -> MetricsStore:
    return request.app.state.store


def get_aggregator(request: Request) -> PortfolioAggregator:
    return PortfolioAggregator(request.app.state.store)


def get_ingress(request: Request) -> EventIngressService:
    return request.app.state.ingress


def _default_date(request: Request) -> date:
    """Yesterday in the configured reporting timezone."""
    settings = request.app.state.settings
    return datetime.now(settings.tzinfo).date() - timedelta(days=1)


@webhook_router.post(
    "/revenuecat",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(verify_webhook_secret)],
    summary="Receive a RevenueCat webhook event",
    description=(
        "Stores the event once per event_id and notifies the operator chat "
        "for production purchase lifecycle events. Always acknowledges "
        "authorized deliveries so RevenueCat does not retry."
    ),
)
async def receive_revenuecat_event(
    request: Request,
    ingress: EventIngressService = Depends(get_ingress),
) -> WebhookAck:
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Webhook body is not valid JSON")
        return WebhookAck(status=IngressStatus.IGNORED.value)

    result, event_id = await ingress.handle(payload)
    return WebhookAck(status=result.value, event_id=event_id)


@router.get(
    "/metrics/snapshot",
    response_model=SnapshotResponse,
    summary="Portfolio snapshot for one date",
)
async def get_snapshot(
    request: Request,
    target_date: Optional[date] = Query(None, alias="date"),
    aggregator: PortfolioAggregator = Depends(get_aggregator),
) -> SnapshotResponse:
    snapshot = aggregator.snapshot(target_date or _default_date(request))
    return SnapshotResponse.model_validate(asdict(snapshot))


@router.get(
    "/metrics/trends",
    response_model=TrendsResponse,
    summary="Daily trend series",
)
async def get_trends(
    request: Request,
    days: int = Query(30, ge=1, le=365),
    end_date: Optional[date] = Query(None),
    aggregator: PortfolioAggregator = Depends(get_aggregator),
) -> TrendsResponse:
    end = end_date or _default_date(request)
    points = aggregator.trends(end, days)
    return TrendsResponse(
        end_date=end.isoformat(),
        days=days,
        points=[TrendPointModel.model_validate(asdict(point)) for point in points],
    )


@router.get(
    "/metrics/top",
    response_model=TopPerformersResponse,
    summary="Top performing apps",
)
async def get_top_performers(
    request: Request,
    metric: str = Query("revenue"),
    limit: int = Query(5, ge=1, le=100),
    target_date: Optional[date] = Query(None, alias="date"),
    aggregator: PortfolioAggregator = Depends(get_aggregator),
) -> TopPerformersResponse:
    if metric not in TOP_METRICS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"metric must be one of: {', '.join(TOP_METRICS)}",
        )

    day = target_date or _default_date(request)
    performers = aggregator.top_performers(day, metric, limit)
    return TopPerformersResponse(
        date=day.isoformat(),
        metric=metric,
        performers=[
            TopPerformerModel(
                app_id=performer.app.id,
                app_slug=performer.app.slug,
                app_name=performer.app.name,
                metric=performer.metric,
                value=performer.value,
                change=performer.change,
            )
            for performer in performers
        ],
    )


@router.get(
    "/ingestion/logs",
    response_model=list[IngestionLogModel],
    summary="Recent ingestion runs",
)
async def get_ingestion_logs(
    target_date: Optional[date] = Query(None, alias="date"),
    source: Optional[str] = Query(None),
    log_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=1000),
    store: MetricsStore = Depends(get_store),
) -> list[IngestionLogModel]:
    logs = store.get_logs(target_date, source=source, status=log_status, limit=limit)
    return [IngestionLogModel.model_validate(entry) for entry in logs]
