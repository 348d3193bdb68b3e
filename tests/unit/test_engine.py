"""Unit tests for the fan-out orchestrator and the aggregation engine."""
import asyncio
from datetime import date
from unittest.mock import MagicMock

import pytest

from pulse_core.aggregation.cache import InMemoryResponseCache
from pulse_core.aggregation.credentials import StaticCredentialResolver
from pulse_core.aggregation.engine import AggregationEngine
from pulse_core.aggregation.orchestrator import FanOutOrchestrator
from pulse_core.aggregation.types import (
    DateRange,
    ProviderCredential,
    ProviderKind,
    RequestSpec,
    ResultStatus,
)
from pulse_core.config import Settings
from pulse_core.exceptions import ConfigError, ProviderError
from pulse_core.providers.base import ProviderAdapter
from pulse_core.providers.registry import AdapterRegistry


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def fake_adapter(
    kind, source, rows=None, error=None, delay=0.0, calls=None, requires_token=True
):
    """Adapter class returning canned rows (or raising) without HTTP."""

    class FakeAdapter(ProviderAdapter):
        async def _fetch_rows(self, token, credential, date_range, filters):
            if calls is not None:
                calls.append((kind, source))
            if delay:
                await asyncio.sleep(delay)
            if error is not None:
                raise error
            return list(rows or [])

    FakeAdapter.kind = kind
    FakeAdapter.source = source
    FakeAdapter.requires_token = requires_token
    return FakeAdapter


VISITOR_ROWS = [
    {
        "dimensionValues": [{"value": "20240101"}, {"value": "Organic Search"}],
        "metricValues": [{"value": "10"}, {"value": "10"}, {"value": "6"}],
    },
    {
        "dimensionValues": [{"value": "20240101"}, {"value": "Direct"}],
        "metricValues": [{"value": "5"}, {"value": "5"}, {"value": "4"}],
    },
]
META_ROWS = [
    {
        "date_start": "2024-01-02",
        "campaign_id": "c-1",
        "campaign_name": "Winter promo",
        "objective": "OUTCOME_TRAFFIC",
        "spend": "20",
    }
]
TOSSDOWN_ROWS = [{"date": "2024-01-02", "grand_total": "80", "source": "web"}]

TOKENS = {
    "ga4": {"access_token": "ga4-token", "refresh_token": "ga4-refresh"},
    "meta_ads": {"access_token": "meta-token"},
    "tossdown": {},
}


def _spec(kinds=tuple(ProviderKind), bypass=False):
    refs = {
        ProviderKind.ANALYTICS: "123456",
        ProviderKind.AD_SPEND: "act_987",
        ProviderKind.SALES: "42",
    }
    return RequestSpec(
        account_refs={kind: refs[kind] for kind in kinds},
        date_range=DateRange(date(2024, 1, 1), date(2024, 1, 2)),
        sources={
            ProviderKind.ANALYTICS: "ga4",
            ProviderKind.AD_SPEND: "meta_ads",
            ProviderKind.SALES: "tossdown",
        },
        cache_bypass=bypass,
    )


def _registry(calls, meta_error=None, visitors_delay=0.0):
    registry = AdapterRegistry()
    registry.register(
        fake_adapter(
            ProviderKind.ANALYTICS, "ga4", VISITOR_ROWS, delay=visitors_delay, calls=calls
        )
    )
    registry.register(
        fake_adapter(ProviderKind.AD_SPEND, "meta_ads", META_ROWS, error=meta_error, calls=calls)
    )
    registry.register(
        fake_adapter(
            ProviderKind.SALES, "tossdown", TOSSDOWN_ROWS, calls=calls, requires_token=False
        )
    )
    return registry


def _engine(registry, settings=None, cache=None, ttl_s=900):
    settings = settings or Settings()
    orchestrator = FanOutOrchestrator(registry, MagicMock(), settings)
    if cache is None:
        cache = InMemoryResponseCache()
    return AggregationEngine(orchestrator, cache, ttl_s=ttl_s)


@pytest.mark.asyncio
async def test_orchestrator_settles_all_providers():
    calls: list = []
    registry = _registry(calls, meta_error=ProviderError("ad_spend", "meta_ads", "HTTP 500"))
    orchestrator = FanOutOrchestrator(registry, MagicMock(), Settings())
    credentials = {
        kind: ProviderCredential(kind=kind, access_token="t", external_id="x")
        for kind in ProviderKind
    }

    results = await orchestrator.run(_spec(), credentials)

    assert results[ProviderKind.ANALYTICS].status is ResultStatus.OK
    assert results[ProviderKind.SALES].status is ResultStatus.OK
    assert results[ProviderKind.AD_SPEND].status is ResultStatus.ERROR
    assert results[ProviderKind.AD_SPEND].error_kind == "provider"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_orchestrator_timeout_only_affects_slow_provider():
    calls: list = []
    settings = Settings(provider_timeouts={"ga4": 0.05, "meta_ads": 5, "tossdown": 5})
    orchestrator = FanOutOrchestrator(_registry(calls, visitors_delay=2), MagicMock(), settings)
    credentials = {
        kind: ProviderCredential(kind=kind, access_token="t", external_id="x")
        for kind in ProviderKind
    }

    results = await orchestrator.run(_spec(), credentials)

    assert results[ProviderKind.ANALYTICS].error_kind == "timeout"
    assert results[ProviderKind.AD_SPEND].status is ResultStatus.OK
    assert results[ProviderKind.SALES].status is ResultStatus.OK


@pytest.mark.asyncio
async def test_orchestrator_skips_unrequested_and_flags_missing_credentials():
    calls: list = []
    orchestrator = FanOutOrchestrator(_registry(calls), MagicMock(), Settings())
    spec = _spec(kinds=(ProviderKind.ANALYTICS, ProviderKind.AD_SPEND))
    credentials = {
        ProviderKind.ANALYTICS: ProviderCredential(
            kind=ProviderKind.ANALYTICS, access_token="t", external_id="123456"
        ),
        ProviderKind.AD_SPEND: None,
    }

    results = await orchestrator.run(spec, credentials)

    assert results[ProviderKind.SALES].status is ResultStatus.SKIPPED
    assert results[ProviderKind.AD_SPEND].error_kind == "config"
    assert results[ProviderKind.ANALYTICS].status is ResultStatus.OK
    assert calls == [(ProviderKind.ANALYTICS, "ga4")]


@pytest.mark.asyncio
async def test_orchestrator_unexpected_exception_is_captured():
    calls: list = []
    orchestrator = FanOutOrchestrator(
        _registry(calls, meta_error=RuntimeError("bug")), MagicMock(), Settings()
    )
    credentials = {
        kind: ProviderCredential(kind=kind, access_token="t", external_id="x")
        for kind in ProviderKind
    }

    results = await orchestrator.run(_spec(), credentials)

    assert results[ProviderKind.AD_SPEND].error_kind == "provider"
    assert results[ProviderKind.ANALYTICS].status is ResultStatus.OK


@pytest.mark.asyncio
async def test_partial_failure_isolation():
    """A failing provider degrades its section; the rest still merge."""
    calls: list = []
    engine = _engine(_registry(calls, meta_error=ProviderError("ad_spend", "meta_ads", "boom")))

    response = await engine.aggregate(_spec(), StaticCredentialResolver(TOKENS))

    assert [r.date for r in response.daily_data] == [date(2024, 1, 1), date(2024, 1, 2)]
    assert response.totals.visitors.total == 15
    assert response.totals.visitors.organic_search == 10
    assert response.totals.ad_spend.spend == 0
    assert response.totals.sales.revenue == 80
    assert response.totals.sales.revenue_by_source == {"web": 80.0}

    sources = response.data_sources
    assert sources["analytics"].available is True
    assert sources["sales"].available is True
    assert sources["ad_spend"].enabled is True
    assert sources["ad_spend"].available is False
    assert sources["ad_spend"].reason == "provider"
    assert response.cache_status == "MISS"


@pytest.mark.asyncio
async def test_two_provider_example_end_to_end():
    calls: list = []
    engine = _engine(_registry(calls))
    spec = _spec(kinds=(ProviderKind.ANALYTICS, ProviderKind.AD_SPEND))

    response = await engine.aggregate(spec, StaticCredentialResolver(TOKENS))

    jan1, jan2 = response.daily_data
    assert jan1.visitors.total == 15
    assert jan1.ad_spend.spend == 0
    assert jan2.visitors.total == 0
    assert jan2.ad_spend.spend == 20
    assert response.totals.visitors.total == 15
    assert response.totals.ad_spend.spend == 20
    traffic = response.totals.ad_spend.spend_by_objective["TRAFFIC"]
    assert traffic.spend == 20.0
    assert traffic.campaign_count == 1
    assert [c.campaign_name for c in response.totals.ad_spend.campaigns] == ["Winter promo"]
    assert response.data_sources["sales"].enabled is False
    assert response.data_sources["sales"].reason == "not_requested"


@pytest.mark.asyncio
async def test_no_credentials_fails_before_fan_out():
    calls: list = []
    engine = _engine(_registry(calls))

    with pytest.raises(ConfigError):
        await engine.aggregate(
            _spec(kinds=(ProviderKind.ANALYTICS, ProviderKind.AD_SPEND)),
            StaticCredentialResolver({}),
        )

    assert calls == []


@pytest.mark.asyncio
async def test_empty_request_is_config_error():
    engine = _engine(_registry([]))

    with pytest.raises(ConfigError):
        await engine.aggregate(_spec(kinds=()), StaticCredentialResolver(TOKENS))


@pytest.mark.asyncio
async def test_some_credentials_missing_degrades_to_config():
    calls: list = []
    engine = _engine(_registry(calls))
    tokens = {"ga4": TOKENS["ga4"]}

    response = await engine.aggregate(_spec(), StaticCredentialResolver(tokens))

    assert response.data_sources["analytics"].available is True
    assert response.data_sources["ad_spend"].reason == "config"
    # Tossdown is served from the account id alone
    assert response.data_sources["sales"].available is True
    assert sorted(calls) == [(ProviderKind.ANALYTICS, "ga4"), (ProviderKind.SALES, "tossdown")]


@pytest.mark.asyncio
async def test_cache_ttl_scenario():
    """t=0 computes, t=500 is served from cache, t=901 recomputes."""
    calls: list = []
    clock = FakeClock(0)
    engine = _engine(_registry(calls), cache=InMemoryResponseCache(clock=clock), ttl_s=900)
    spec = _spec(kinds=(ProviderKind.ANALYTICS,))
    resolver = StaticCredentialResolver(TOKENS)

    first = await engine.aggregate(spec, resolver)
    assert first.cache_status == "MISS"
    assert len(calls) == 1

    clock.now = 500
    second = await engine.aggregate(spec, resolver)
    assert second.cache_status == "HIT"
    assert len(calls) == 1
    assert second.daily_data == first.daily_data
    assert second.totals == first.totals
    assert second.data_sources["analytics"].available is True
    assert second.data_sources["sales"].reason == "not_requested"

    clock.now = 901
    third = await engine.aggregate(spec, resolver)
    assert third.cache_status == "MISS"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_bypass_skips_read_but_writes():
    calls: list = []
    cache = InMemoryResponseCache()
    engine = _engine(_registry(calls), cache=cache)
    spec = _spec(kinds=(ProviderKind.ANALYTICS,))
    resolver = StaticCredentialResolver(TOKENS)

    await engine.aggregate(spec, resolver)
    bypassed = await engine.aggregate(_spec(kinds=(ProviderKind.ANALYTICS,), bypass=True), resolver)

    assert bypassed.cache_status == "BYPASS"
    assert len(calls) == 2
    assert bypassed.fingerprint == engine.fingerprint(spec)

    entry = await cache.get(bypassed.fingerprint)
    assert entry is not None
    assert "availability" in entry.payload
    assert "reason" not in str(entry.payload)


@pytest.mark.asyncio
async def test_concurrent_identical_requests_compute_once():
    calls: list = []
    engine = _engine(_registry(calls, visitors_delay=0.02))
    spec = _spec(kinds=(ProviderKind.ANALYTICS,))
    resolver = StaticCredentialResolver(TOKENS)

    first, second = await asyncio.gather(
        engine.aggregate(spec, resolver), engine.aggregate(spec, resolver)
    )

    assert len(calls) == 1
    assert {first.cache_status, second.cache_status} == {"MISS", "HIT"}


@pytest.mark.asyncio
async def test_unnormalizable_report_degrades_provider():
    calls: list = []
    registry = _registry(calls)
    registry.register(fake_adapter(ProviderKind.SALES, "shopify", [{"id": 1}], calls=calls))
    engine = _engine(registry)
    spec = RequestSpec(
        account_refs={ProviderKind.ANALYTICS: "123456", ProviderKind.SALES: "shop"},
        date_range=DateRange(date(2024, 1, 1), date(2024, 1, 2)),
        sources={ProviderKind.SALES: "shopify"},
    )

    response = await engine.aggregate(
        spec, StaticCredentialResolver({**TOKENS, "shopify": {"access_token": "x"}})
    )

    assert response.data_sources["sales"].available is False
    assert response.data_sources["sales"].reason == "provider"
    assert response.totals.visitors.total == 15


@pytest.mark.asyncio
async def test_junk_rows_are_dropped_not_fatal():
    calls: list = []
    registry = _registry(calls)
    registry.register(
        fake_adapter(
            ProviderKind.SALES,
            "tossdown",
            ["garbage", None, 7, *TOSSDOWN_ROWS],
            calls=calls,
            requires_token=False,
        )
    )
    engine = _engine(registry)

    response = await engine.aggregate(
        _spec(kinds=(ProviderKind.ANALYTICS, ProviderKind.SALES)),
        StaticCredentialResolver(TOKENS),
    )

    assert response.totals.visitors.total == 15
    assert response.totals.sales.revenue == 80
    assert response.totals.sales.transactions == 1
    assert response.data_sources["sales"].available is True


@pytest.mark.asyncio
async def test_normalizer_crash_degrades_only_that_provider(monkeypatch):
    from pulse_core.aggregation import engine as engine_module

    real_normalize = engine_module.normalize

    def flaky_normalize(kind, report):
        if kind is ProviderKind.SALES:
            raise AttributeError("'str' object has no attribute 'get'")
        return real_normalize(kind, report)

    monkeypatch.setattr(engine_module, "normalize", flaky_normalize)
    engine = _engine(_registry([]))

    response = await engine.aggregate(
        _spec(kinds=(ProviderKind.ANALYTICS, ProviderKind.SALES)),
        StaticCredentialResolver(TOKENS),
    )

    assert response.totals.visitors.total == 15
    assert response.totals.sales.revenue == 0
    assert response.data_sources["analytics"].available is True
    assert response.data_sources["sales"].available is False
    assert response.data_sources["sales"].reason == "provider"
