"""Value types shared by the aggregation pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any, Mapping, Optional


class ProviderKind(str, Enum):
    """Provider categories; each owns one section of a daily record."""

    ANALYTICS = "analytics"
    AD_SPEND = "ad_spend"
    SALES = "sales"


class ResultStatus(str, Enum):
    """Settled state of one provider call."""

    OK = "ok"
    ERROR = "error"
    SKIPPED = "skipped"


DEFAULT_SOURCES: dict[ProviderKind, str] = {
    ProviderKind.ANALYTICS: "ga4",
    ProviderKind.AD_SPEND: "meta_ads",
    ProviderKind.SALES: "ga4",
}


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar date range."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(
                f"date range start {self.start} is after end {self.end}"
            )

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def chunks(self, max_days: int) -> list[DateRange]:
        """Split into consecutive sub-ranges of at most max_days days."""
        chunks: list[DateRange] = []
        current = self.start
        while current <= self.end:
            chunk_end = min(current + timedelta(days=max_days - 1), self.end)
            chunks.append(DateRange(current, chunk_end))
            current = chunk_end + timedelta(days=1)
        return chunks


@dataclass(frozen=True)
class RequestSpec:
    """Fully resolved aggregation request.

    account_refs maps each requested kind to the provider-side id
    (GA4 property, Meta ad account, Tossdown eatout id, Square location).
    sources picks which adapter serves each kind.
    """

    account_refs: Mapping[ProviderKind, str]
    date_range: DateRange
    filters: Mapping[str, str] = field(default_factory=dict)
    sources: Mapping[ProviderKind, str] = field(
        default_factory=lambda: dict(DEFAULT_SOURCES)
    )
    cache_bypass: bool = False

    def source_for(self, kind: ProviderKind) -> str:
        return self.sources.get(kind, DEFAULT_SOURCES[kind])

    @property
    def requested_kinds(self) -> list[ProviderKind]:
        return [kind for kind in ProviderKind if self.account_refs.get(kind)]


@dataclass(frozen=True)
class ProviderCredential:
    """Credentials for one provider, held only for the life of a request."""

    kind: ProviderKind
    access_token: Optional[str]
    external_id: str
    refresh_token: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"ProviderCredential(kind={self.kind.value!r}, "
            f"external_id={self.external_id!r}, "
            f"has_access_token={bool(self.access_token)}, "
            f"has_refresh_token={bool(self.refresh_token)})"
        )


@dataclass(frozen=True)
class ProviderReport:
    """Provider-native rows; only the matching normalizer reads them."""

    kind: ProviderKind
    source: str
    rows: list[dict[str, Any]]


@dataclass(frozen=True)
class DailyPartial:
    """One provider's contribution to one calendar day."""

    date: date
    kind: ProviderKind
    metrics: Mapping[str, float]
    category: Optional[str] = None
    # Provider-side entity the row belongs to (Meta campaign)
    entity_id: Optional[str] = None
    entity_name: Optional[str] = None

    def sort_key(self) -> tuple:
        return (
            self.date,
            self.kind.value,
            self.category or "",
            self.entity_id or "",
            tuple(sorted(self.metrics.items())),
        )


@dataclass(frozen=True)
class ProviderResult:
    """Settled outcome of one provider call."""

    kind: ProviderKind
    source: str
    status: ResultStatus
    report: Optional[ProviderReport] = None
    error: Optional[BaseException] = None

    @classmethod
    def ok(cls, report: ProviderReport) -> ProviderResult:
        return cls(report.kind, report.source, ResultStatus.OK, report=report)

    @classmethod
    def failed(
        cls, kind: ProviderKind, source: str, error: BaseException
    ) -> ProviderResult:
        return cls(kind, source, ResultStatus.ERROR, error=error)

    @classmethod
    def skipped(cls, kind: ProviderKind, source: str) -> ProviderResult:
        return cls(kind, source, ResultStatus.SKIPPED)

    @property
    def error_kind(self) -> Optional[str]:
        if self.error is None:
            return None
        return getattr(self.error, "error_kind", "provider")
