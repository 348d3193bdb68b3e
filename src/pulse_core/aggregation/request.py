"""Resolve raw request parameters into one RequestSpec.

Resolution order is fixed: explicit parameters, then the brand's stored
connections, then sales-source auto-detection (Tossdown before GA4). The
engine never sees any of this fallback logic.
"""
import logging
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Mapping, Optional

from ..exceptions import ConfigError
from .credentials import (
    CONNECTION_FIELDS,
    BrandConnectionStore,
    BrandCredentialResolver,
    CredentialResolver,
)
from .types import DateRange, ProviderKind, RequestSpec


logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 7
ABSENT_VALUES = {"", "not-set", "0", "null", "undefined"}
FILTER_PARAMS = ("status", "objective")

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class ResolvedRequest:
    """A RequestSpec plus the credential resolver that goes with it."""

    spec: RequestSpec
    brand_id: Optional[str]
    resolver: Optional[CredentialResolver]


def _present(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in ABSENT_VALUES:
        return None
    return text


def _parse_date(value: Any, default: date, name: str) -> date:
    text = _present(value)
    if text is None:
        return default
    if _ISO_DATE.match(text):
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
    logger.warning("Ignoring malformed %s date '%s', using %s", name, text, default)
    return default


def resolve_date_range(
    start: Any, end: Any, today: Optional[date] = None
) -> DateRange:
    """Parse from/to, defaulting each independently to the last 7 days.

    Raises:
        ConfigError: from is after to
    """
    today = today or date.today()
    start_day = _parse_date(start, today - timedelta(days=DEFAULT_LOOKBACK_DAYS), "from")
    end_day = _parse_date(end, today, "to")
    if start_day > end_day:
        raise ConfigError(
            f"'from' ({start_day.isoformat()}) must not be after 'to' ({end_day.isoformat()})"
        )
    return DateRange(start_day, end_day)


def _connection_id(connections: Mapping[str, Any], source: str) -> Optional[str]:
    record_name, id_field = CONNECTION_FIELDS[source]
    record = connections.get(record_name) or {}
    return _present(record.get(id_field))


async def resolve_request(
    params: Mapping[str, Any],
    store: Optional[BrandConnectionStore] = None,
    *,
    sales_source: Optional[str] = None,
    today: Optional[date] = None,
) -> ResolvedRequest:
    """Build a RequestSpec from query parameters and brand connections.

    Args:
        params: Raw query parameters
        store: Brand connection store used when brand_id is given
        sales_source: Force the sales source (ignores the sales_source param)
        today: Reference date for the default range

    Raises:
        ConfigError: Invalid date range or no account reference at all
    """
    date_range = resolve_date_range(params.get("from"), params.get("to"), today)

    brand_id = _present(params.get("brand_id"))
    connections: Mapping[str, Any] = {}
    resolver: Optional[CredentialResolver] = None
    if brand_id and store is not None:
        brand_resolver = BrandCredentialResolver(store, brand_id)
        try:
            connections = await brand_resolver.connections()
        except (OSError, ValueError) as exc:
            raise ConfigError(f"cannot load connections for brand '{brand_id}': {exc}") from exc
        resolver = brand_resolver
    elif brand_id:
        logger.warning("brand_id %s given but no brand store is configured", brand_id)

    ga4_property = _present(params.get("ga4_property_id")) or _connection_id(connections, "ga4")
    meta_account = _present(params.get("meta_account_id")) or _connection_id(
        connections, "meta_ads"
    )

    chosen_sales = sales_source or _present(params.get("sales_source"))
    sales_ref = None if sales_source else _present(params.get("sales_source_id"))
    if chosen_sales is None:
        tossdown_id = sales_ref or _connection_id(connections, "tossdown")
        if tossdown_id:
            chosen_sales, sales_ref = "tossdown", tossdown_id
        elif ga4_property:
            chosen_sales, sales_ref = "ga4", sales_ref or ga4_property
    elif sales_ref is None:
        if chosen_sales == "ga4":
            sales_ref = ga4_property
        elif chosen_sales in CONNECTION_FIELDS:
            sales_ref = _connection_id(connections, chosen_sales)

    account_refs: dict[ProviderKind, str] = {}
    if ga4_property:
        account_refs[ProviderKind.ANALYTICS] = ga4_property
    if meta_account:
        account_refs[ProviderKind.AD_SPEND] = meta_account
    if sales_ref:
        account_refs[ProviderKind.SALES] = sales_ref

    if not account_refs:
        raise ConfigError(
            "no provider account configured: pass ga4_property_id, meta_account_id, "
            "sales_source_id or a brand_id with stored connections"
        )

    sources = {
        ProviderKind.ANALYTICS: "ga4",
        ProviderKind.AD_SPEND: "meta_ads",
        ProviderKind.SALES: chosen_sales or "ga4",
    }
    filters = {
        name: value
        for name in FILTER_PARAMS
        if (value := _present(params.get(name))) is not None
    }
    cache_bypass = str(params.get("cache", "")).strip().lower() in ("0", "false", "no")

    spec = RequestSpec(
        account_refs=account_refs,
        date_range=date_range,
        filters=filters,
        sources=sources,
        cache_bypass=cache_bypass,
    )
    logger.info(
        "Resolved request: brand=%s refs=%s sales_source=%s range=%s..%s",
        brand_id,
        {kind.value: ref for kind, ref in account_refs.items()},
        sources[ProviderKind.SALES],
        date_range.start.isoformat(),
        date_range.end.isoformat(),
    )
    return ResolvedRequest(spec=spec, brand_id=brand_id, resolver=resolver)
