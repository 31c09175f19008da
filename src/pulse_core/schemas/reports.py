"""Pydantic response models for the report endpoints."""
from typing import Optional

from pydantic import BaseModel, Field


class AppSnapshotModel(BaseModel):
    app_id: str
    app_slug: str
    app_name: str
    revenue: float
    mrr: float
    dau: int
    installs: int
    revenue_change_pct: float
    dau_change_pct: float


class ProviderSnapshotModel(BaseModel):
    provider_id: str
    provider_slug: str
    provider_name: str
    cost: float
    usage_quantity: Optional[float] = None
    usage_unit: Optional[str] = None
    cost_change_pct: float


class SnapshotResponse(BaseModel):
    """Portfolio snapshot for one date."""

    date: str = Field(..., description="Metric date (YYYY-MM-DD)")
    total_revenue: float
    total_mrr: float
    total_dau: int
    total_installs: int
    total_costs: float
    revenue_change_pct: float = Field(..., description="0 when the prior day is 0")
    dau_change_pct: float
    installs_change_pct: float
    costs_change_pct: float
    cost_per_user: float
    apps: list[AppSnapshotModel] = Field(default_factory=list)
    providers: list[ProviderSnapshotModel] = Field(default_factory=list)


class TrendPointModel(BaseModel):
    date: str
    revenue: float
    dau: int
    installs: int
    costs: float


class TrendsResponse(BaseModel):
    end_date: str
    days: int
    points: list[TrendPointModel]


class TopPerformerModel(BaseModel):
    app_id: str
    app_slug: str
    app_name: str
    metric: str
    value: float
    change: float


class TopPerformersResponse(BaseModel):
    date: str
    metric: str
    performers: list[TopPerformerModel]


class IngestionLogModel(BaseModel):
    id: int
    source: str
    date: str
    app_id: Optional[str] = None
    provider_id: Optional[str] = None
    started_at: str
    completed_at: Optional[str] = None
    status: str = Field(..., description="running|success|failed")
    records_processed: int
    error_message: Optional[str] = None
    error_details: Optional[dict] = None
