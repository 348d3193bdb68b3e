"""Convert provider-native reports into per-day partial records.

Every function here is pure: the same report always yields the same partials
and no state is shared between calls. Missing or non-numeric values become 0.
"""
import logging
import math
import re
from datetime import date
from typing import Any, Callable, Iterator, Optional

from .types import DailyPartial, ProviderKind, ProviderReport
from .vocabulary import map_channel_group, to_friendly_objective


logger = logging.getLogger(__name__)

_COMPACT_DATE = re.compile(r"^\d{8}$")


def safe_number(value: Any) -> float:
    """Coerce a provider value to a finite float, defaulting to 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


def parse_day(value: Any) -> Optional[date]:
    """Parse YYYYMMDD, YYYY-MM-DD or an ISO timestamp into a calendar date."""
    if not value or not isinstance(value, str):
        return None
    value = value.strip()
    if _COMPACT_DATE.match(value):
        value = f"{value[:4]}-{value[4:6]}-{value[6:]}"
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _cell(cells: Any, index: int) -> Any:
    if not isinstance(cells, list) or index >= len(cells):
        return None
    cell = cells[index]
    return cell.get("value") if isinstance(cell, dict) else None


def _drop(report: ProviderReport, row: Any) -> None:
    logger.warning("Dropping unusable %s row: %s", report.source, str(row)[:200])


def _rows(report: ProviderReport) -> Iterator[dict[str, Any]]:
    """Yield the report's dict rows; anything else is dropped."""
    for row in report.rows or ():
        if isinstance(row, dict):
            yield row
        else:
            _drop(report, row)


def _text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def normalize_ga4_visitors(report: ProviderReport) -> list[DailyPartial]:
    partials: list[DailyPartial] = []
    for row in _rows(report):
        dims = row.get("dimensionValues")
        values = row.get("metricValues")
        day = parse_day(_cell(dims, 0))
        if day is None:
            _drop(report, row)
            continue
        partials.append(
            DailyPartial(
                date=day,
                kind=ProviderKind.ANALYTICS,
                category=map_channel_group(_cell(dims, 1)),
                metrics={
                    "users": safe_number(_cell(values, 0)),
                    "sessions": safe_number(_cell(values, 1)),
                    "engaged_sessions": safe_number(_cell(values, 2)),
                },
            )
        )
    return partials


def normalize_ga4_sales(report: ProviderReport) -> list[DailyPartial]:
    partials: list[DailyPartial] = []
    for row in _rows(report):
        day = parse_day(_cell(row.get("dimensionValues"), 0))
        if day is None:
            _drop(report, row)
            continue
        values = row.get("metricValues")
        partials.append(
            DailyPartial(
                date=day,
                kind=ProviderKind.SALES,
                category="ga4",
                metrics={
                    "transactions": safe_number(_cell(values, 0)),
                    "revenue": safe_number(_cell(values, 1)),
                },
            )
        )
    return partials


def normalize_meta_ads(report: ProviderReport) -> list[DailyPartial]:
    partials: list[DailyPartial] = []
    for row in _rows(report):
        day = parse_day(row.get("date_start"))
        if day is None:
            _drop(report, row)
            continue
        partials.append(
            DailyPartial(
                date=day,
                kind=ProviderKind.AD_SPEND,
                category=to_friendly_objective(row.get("objective")),
                entity_id=_text(row.get("campaign_id")),
                entity_name=_text(row.get("campaign_name")),
                metrics={
                    "spend": safe_number(row.get("spend")),
                    "impressions": safe_number(row.get("impressions")),
                    "clicks": safe_number(row.get("clicks")),
                    "reach": safe_number(row.get("reach")),
                },
            )
        )
    return partials


def _money(block: Any) -> Optional[float]:
    if not isinstance(block, dict) or block.get("amount") in (None, ""):
        return None
    return safe_number(block.get("amount")) / 100


def square_order_amount(order: dict[str, Any]) -> float:
    """Order value in major units, trying money fields in order of preference."""
    for field_name in ("net_amount_due_money", "total_money", "net_money"):
        amount = _money(order.get(field_name))
        if amount is not None:
            return amount

    tenders = order.get("tenders")
    if not isinstance(tenders, list):
        return 0.0
    return sum(_money(t.get("amount_money")) or 0.0 for t in tenders if isinstance(t, dict))


def normalize_square(report: ProviderReport) -> list[DailyPartial]:
    partials: list[DailyPartial] = []
    for order in _rows(report):
        day = parse_day(order.get("created_at"))
        if day is None:
            _drop(report, order.get("id"))
            continue
        partials.append(
            DailyPartial(
                date=day,
                kind=ProviderKind.SALES,
                category="square",
                metrics={"revenue": square_order_amount(order), "transactions": 1.0},
            )
        )
    return partials


def normalize_tossdown(report: ProviderReport) -> list[DailyPartial]:
    partials: list[DailyPartial] = []
    for order in _rows(report):
        day = parse_day(order.get("date"))
        if day is None:
            _drop(report, order.get("id"))
            continue
        partials.append(
            DailyPartial(
                date=day,
                kind=ProviderKind.SALES,
                category=_text(order.get("source")) or "unknown",
                metrics={
                    "revenue": safe_number(order.get("grand_total")),
                    "transactions": 1.0,
                },
            )
        )
    return partials


NORMALIZERS: dict[tuple[ProviderKind, str], Callable[[ProviderReport], list[DailyPartial]]] = {
    (ProviderKind.ANALYTICS, "ga4"): normalize_ga4_visitors,
    (ProviderKind.SALES, "ga4"): normalize_ga4_sales,
    (ProviderKind.AD_SPEND, "meta_ads"): normalize_meta_ads,
    (ProviderKind.SALES, "square"): normalize_square,
    (ProviderKind.SALES, "tossdown"): normalize_tossdown,
}


def normalize(kind: ProviderKind, report: ProviderReport) -> list[DailyPartial]:
    """Normalize one provider report into daily partials.

    Raises:
        ValueError: Report kind mismatch or no normalizer for the source
    """
    if report.kind != kind:
        raise ValueError(
            f"report from {report.source} is {report.kind.value}, expected {kind.value}"
        )
    try:
        normalizer = NORMALIZERS[(kind, report.source)]
    except KeyError:
        raise ValueError(
            f"no normalizer for {kind.value} source '{report.source}'"
        ) from None
    return normalizer(report)
