"""Pydantic schemas for engine output."""
from .metrics import (
    AdSpendMetrics,
    AdSpendTotals,
    AggregateResponse,
    AggregateTotals,
    CampaignSpend,
    DailyRecord,
    DataSourceStatus,
    MergedMetrics,
    ObjectiveSpend,
    SalesMetrics,
    SalesTotals,
    VisitorMetrics,
)

__all__ = [
    "AdSpendMetrics",
    "AdSpendTotals",
    "AggregateResponse",
    "AggregateTotals",
    "CampaignSpend",
    "DailyRecord",
    "DataSourceStatus",
    "MergedMetrics",
    "ObjectiveSpend",
    "SalesMetrics",
    "SalesTotals",
    "VisitorMetrics",
]
