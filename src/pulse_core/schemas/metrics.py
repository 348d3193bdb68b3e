"""Pydantic models for merged metrics output."""
import datetime as dt
from typing import Optional

from pydantic import BaseModel, Field


class VisitorMetrics(BaseModel):
    """Site visitors by channel category plus session engagement."""

    total: float = 0
    organic_search: float = 0
    paid_search: float = 0
    organic_social: float = 0
    paid_social: float = 0
    direct: float = 0
    email: float = 0
    affiliate: float = 0
    display: float = 0
    video: float = 0
    referral: float = 0
    unassigned: float = 0
    paid_other: float = 0
    sessions: float = 0
    engaged_sessions: float = 0
    bounce_rate: float = Field(0, description="(sessions - engaged) / sessions * 100")
    engagement_rate: float = Field(0, description="engaged / sessions * 100")


class AdSpendMetrics(BaseModel):
    """Paid media delivery and cost."""

    spend: float = 0
    impressions: float = 0
    clicks: float = 0
    reach: float = 0
    ctr: float = Field(0, description="clicks / impressions * 100")
    cpc: float = Field(0, description="spend / clicks")
    cpm: float = Field(0, description="spend / impressions * 1000")


class SalesMetrics(BaseModel):
    """Completed sales."""

    revenue: float = 0
    transactions: float = 0
    average_order_value: float = Field(0, description="revenue / transactions")


class DailyRecord(BaseModel):
    """Unified metrics for one calendar day."""

    date: dt.date
    visitors: VisitorMetrics = Field(default_factory=VisitorMetrics)
    ad_spend: AdSpendMetrics = Field(default_factory=AdSpendMetrics)
    sales: SalesMetrics = Field(default_factory=SalesMetrics)


class ObjectiveSpend(BaseModel):
    """Ad delivery for one campaign objective over the range."""

    spend: float = 0
    campaign_count: int = Field(0, description="Distinct campaigns with this objective")
    impressions: float = 0
    clicks: float = 0
    reach: float = 0


class CampaignSpend(BaseModel):
    """Ad delivery for one campaign over the range."""

    campaign_id: str
    campaign_name: Optional[str] = None
    objective: str = "UNKNOWN"
    spend: float = 0
    impressions: float = 0
    clicks: float = 0
    reach: float = 0


class AdSpendTotals(AdSpendMetrics):
    """Range totals for ad spend, broken down by objective and campaign."""

    spend_by_objective: dict[str, ObjectiveSpend] = Field(default_factory=dict)
    campaigns: list[CampaignSpend] = Field(
        default_factory=list, description="Campaigns sorted by spend, highest first"
    )


class SalesTotals(SalesMetrics):
    """Range totals for sales, broken down by order source."""

    revenue_by_source: dict[str, float] = Field(default_factory=dict)
    orders_by_source: dict[str, float] = Field(default_factory=dict)


class AggregateTotals(BaseModel):
    """Grand totals over the whole date range."""

    visitors: VisitorMetrics = Field(default_factory=VisitorMetrics)
    ad_spend: AdSpendTotals = Field(default_factory=AdSpendTotals)
    sales: SalesTotals = Field(default_factory=SalesTotals)


class DataSourceStatus(BaseModel):
    """Per-provider availability for one response."""

    enabled: bool = Field(..., description="Provider was requested")
    available: bool = Field(..., description="Provider data is part of the result")
    source: Optional[str] = Field(None, description="Adapter that served the kind")
    reason: Optional[str] = Field(
        None, description="not_requested | auth | provider | timeout | config"
    )


class MergedMetrics(BaseModel):
    """The cacheable part of an aggregation response."""

    daily_data: list[DailyRecord] = Field(default_factory=list)
    totals: AggregateTotals = Field(default_factory=AggregateTotals)


class AggregateResponse(MergedMetrics):
    """Aggregation engine output."""

    data_sources: dict[str, DataSourceStatus] = Field(default_factory=dict)
    fingerprint: Optional[str] = None
    cache_status: str = Field("MISS", description="HIT | MISS | BYPASS")
