"""Merge engine: fold daily partials from all providers into unified records.

Partials are folded additively into a date-keyed map. Derived ratios are
computed once per record from the final sums, then again for the grand totals
from the grand-total numerators and denominators (never as an average of the
daily ratios).
"""
import logging
from collections import defaultdict
from datetime import date
from typing import Iterable, Iterator, Mapping, Optional

from ..schemas.metrics import (
    AdSpendMetrics,
    AdSpendTotals,
    AggregateTotals,
    CampaignSpend,
    DailyRecord,
    ObjectiveSpend,
    SalesMetrics,
    SalesTotals,
    VisitorMetrics,
)
from .types import DailyPartial, ProviderKind
from .vocabulary import CATCH_ALL_CATEGORY, VISITOR_CATEGORIES


logger = logging.getLogger(__name__)

AD_SPEND_FIELDS = ("spend", "impressions", "clicks", "reach")
SALES_FIELDS = ("revenue", "transactions")
VISITOR_FIELDS = ("total", *VISITOR_CATEGORIES, "sessions", "engaged_sessions")

Sums = dict[ProviderKind, dict[str, float]]


def ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    """Zero-guarded ratio rounded to 2 decimal places."""
    if not denominator:
        return 0.0
    return round(numerator / denominator * scale, 2)


def _empty_sums() -> Sums:
    return {
        ProviderKind.ANALYTICS: dict.fromkeys(VISITOR_FIELDS, 0.0),
        ProviderKind.AD_SPEND: dict.fromkeys(AD_SPEND_FIELDS, 0.0),
        ProviderKind.SALES: dict.fromkeys(SALES_FIELDS, 0.0),
    }


def _fold(sums: Sums, partial: DailyPartial) -> None:
    section = sums[partial.kind]
    metrics = partial.metrics

    if partial.kind is ProviderKind.ANALYTICS:
        users = metrics.get("users", 0.0)
        category = partial.category if partial.category in VISITOR_CATEGORIES else CATCH_ALL_CATEGORY
        section["total"] += users
        section[category] += users
        section["sessions"] += metrics.get("sessions", 0.0)
        section["engaged_sessions"] += metrics.get("engaged_sessions", 0.0)
        return

    fields = AD_SPEND_FIELDS if partial.kind is ProviderKind.AD_SPEND else SALES_FIELDS
    for name in fields:
        section[name] += metrics.get(name, 0.0)


def derive_visitors(values: Mapping[str, float]) -> VisitorMetrics:
    sessions = values["sessions"]
    engaged = values["engaged_sessions"]
    return VisitorMetrics(
        **values,
        bounce_rate=ratio(sessions - engaged, sessions, 100),
        engagement_rate=ratio(engaged, sessions, 100),
    )


def derive_ad_spend(values: Mapping[str, float], model=AdSpendMetrics, **extra):
    spend = values["spend"]
    impressions = values["impressions"]
    clicks = values["clicks"]
    return model(
        spend=round(spend, 2),
        impressions=impressions,
        clicks=clicks,
        reach=values["reach"],
        ctr=ratio(clicks, impressions, 100),
        cpc=ratio(spend, clicks),
        cpm=ratio(spend, impressions, 1000),
        **extra,
    )


def derive_sales(values: Mapping[str, float], model=SalesMetrics, **extra):
    revenue = values["revenue"]
    transactions = values["transactions"]
    return model(
        revenue=round(revenue, 2),
        transactions=transactions,
        average_order_value=ratio(revenue, transactions),
        **extra,
    )


def _breakdown(
    partials: Iterable[DailyPartial], kind: ProviderKind, metric: str
) -> dict[str, float]:
    totals: dict[str, float] = defaultdict(float)
    for partial in partials:
        if partial.kind is kind:
            totals[partial.category or "unknown"] += partial.metrics.get(metric, 0.0)
    return {key: round(totals[key], 2) for key in sorted(totals)}


def _ad_spend_partials(partials: Iterable[DailyPartial]) -> Iterator[DailyPartial]:
    return (partial for partial in partials if partial.kind is ProviderKind.AD_SPEND)


def _delivery(values: Mapping[str, float]) -> dict[str, float]:
    return {
        "spend": round(values["spend"], 2),
        "impressions": values["impressions"],
        "clicks": values["clicks"],
        "reach": values["reach"],
    }


def objective_breakdown(partials: Iterable[DailyPartial]) -> dict[str, ObjectiveSpend]:
    """Ad delivery and distinct campaign count per objective, key-sorted."""
    sums: dict[str, dict[str, float]] = {}
    campaigns: dict[str, set[str]] = defaultdict(set)
    for partial in _ad_spend_partials(partials):
        objective = partial.category or "UNKNOWN"
        section = sums.setdefault(objective, dict.fromkeys(AD_SPEND_FIELDS, 0.0))
        for name in AD_SPEND_FIELDS:
            section[name] += partial.metrics.get(name, 0.0)
        if partial.entity_id:
            campaigns[objective].add(partial.entity_id)

    return {
        objective: ObjectiveSpend(
            campaign_count=len(campaigns[objective]), **_delivery(sums[objective])
        )
        for objective in sorted(sums)
    }


def campaign_breakdown(partials: Iterable[DailyPartial]) -> list[CampaignSpend]:
    """Per-campaign delivery sorted by spend descending, then campaign id.

    Partials must arrive in canonical order so that the first name and
    objective seen for a campaign are stable.
    """
    sums: dict[str, dict[str, float]] = {}
    labels: dict[str, tuple[Optional[str], str]] = {}
    for partial in _ad_spend_partials(partials):
        if not partial.entity_id:
            continue
        section = sums.setdefault(partial.entity_id, dict.fromkeys(AD_SPEND_FIELDS, 0.0))
        for name in AD_SPEND_FIELDS:
            section[name] += partial.metrics.get(name, 0.0)
        labels.setdefault(
            partial.entity_id, (partial.entity_name, partial.category or "UNKNOWN")
        )

    campaigns = [
        CampaignSpend(
            campaign_id=campaign_id,
            campaign_name=labels[campaign_id][0],
            objective=labels[campaign_id][1],
            **_delivery(values),
        )
        for campaign_id, values in sums.items()
    ]
    campaigns.sort(key=lambda campaign: (-campaign.spend, campaign.campaign_id))
    return campaigns


def merge(
    partials_by_kind: Mapping[ProviderKind, Iterable[DailyPartial]],
) -> tuple[list[DailyRecord], AggregateTotals]:
    """Merge partials from every provider into daily records and grand totals.

    Args:
        partials_by_kind: Normalized partials per provider kind; skipped or
            failed providers are simply absent

    Returns:
        Daily records sorted by date ascending, and aggregate totals
    """
    # Canonical fold order keeps float sums identical for any input order
    partials = sorted(
        (partial for group in partials_by_kind.values() for partial in group),
        key=DailyPartial.sort_key,
    )

    days: dict[date, Sums] = {}
    for partial in partials:
        _fold(days.setdefault(partial.date, _empty_sums()), partial)

    records: list[DailyRecord] = []
    grand = _empty_sums()
    for day in sorted(days):
        sums = days[day]
        records.append(
            DailyRecord(
                date=day,
                visitors=derive_visitors(sums[ProviderKind.ANALYTICS]),
                ad_spend=derive_ad_spend(sums[ProviderKind.AD_SPEND]),
                sales=derive_sales(sums[ProviderKind.SALES]),
            )
        )
        for kind, section in sums.items():
            for name, value in section.items():
                grand[kind][name] += value

    totals = AggregateTotals(
        visitors=derive_visitors(grand[ProviderKind.ANALYTICS]),
        ad_spend=derive_ad_spend(
            grand[ProviderKind.AD_SPEND],
            model=AdSpendTotals,
            spend_by_objective=objective_breakdown(partials),
            campaigns=campaign_breakdown(partials),
        ),
        sales=derive_sales(
            grand[ProviderKind.SALES],
            model=SalesTotals,
            revenue_by_source=_breakdown(partials, ProviderKind.SALES, "revenue"),
            orders_by_source=_breakdown(partials, ProviderKind.SALES, "transactions"),
        ),
    )

    logger.debug(
        "Merged %s partials into %s daily records", len(partials), len(records)
    )
    return records, totals
