"""Aggregation entry point: resolve credentials, fan out, normalize, merge, cache."""
import logging
from typing import Any, Mapping, Optional

from ..exceptions import ConfigError, ProviderError
from ..schemas.metrics import AggregateResponse, DataSourceStatus, MergedMetrics
from .cache import ResponseCache, fingerprint
from .credentials import CredentialResolver
from .merge import merge
from .normalizer import normalize
from .orchestrator import FanOutOrchestrator
from .types import (
    DailyPartial,
    ProviderCredential,
    ProviderKind,
    ProviderResult,
    RequestSpec,
    ResultStatus,
)


logger = logging.getLogger(__name__)


class AggregationEngine:
    """Produces one merged, cached metrics response per request.

    Args:
        orchestrator: Fan-out over the provider adapters
        cache: Response cache instance shared by all requests
        namespace: Endpoint category; part of the fingerprint
        ttl_s: Cache TTL for this endpoint category
    """

    def __init__(
        self,
        orchestrator: FanOutOrchestrator,
        cache: ResponseCache,
        namespace: str = "overview",
        ttl_s: float = 900,
    ) -> None:
        self.orchestrator = orchestrator
        self.cache = cache
        self.namespace = namespace
        self.ttl_s = ttl_s

    def fingerprint(self, spec: RequestSpec) -> str:
        return fingerprint(spec, self.namespace)

    async def aggregate(
        self, spec: RequestSpec, resolver: CredentialResolver
    ) -> AggregateResponse:
        """Aggregate metrics for a resolved request.

        Raises:
            ConfigError: No provider requested, or none has usable credentials
        """
        if not spec.requested_kinds:
            raise ConfigError("request names no provider account")

        key = self.fingerprint(spec)

        if not spec.cache_bypass:
            cached = await self._cached_response(spec, key)
            if cached is not None:
                return cached

        async with self.cache.single_flight(key):
            if not spec.cache_bypass:
                # Another request may have filled the entry while we waited
                cached = await self._cached_response(spec, key)
                if cached is not None:
                    return cached

            response = await self._compute(spec, resolver, key)

        response.cache_status = "BYPASS" if spec.cache_bypass else "MISS"
        return response

    async def _cached_response(
        self, spec: RequestSpec, key: str
    ) -> Optional[AggregateResponse]:
        entry = await self.cache.get(key)
        if entry is None:
            return None

        logger.info("Cache hit %s (namespace=%s)", key[:12], self.namespace)
        payload = dict(entry.payload)
        availability = payload.pop("availability", {})
        response = AggregateResponse.model_validate(payload)
        response.data_sources = _sources_from_availability(spec, availability)
        response.fingerprint = key
        response.cache_status = "HIT"
        return response

    async def _compute(
        self, spec: RequestSpec, resolver: CredentialResolver, key: str
    ) -> AggregateResponse:
        credentials = await self._resolve_credentials(spec, resolver)
        if not any(credentials.values()):
            raise ConfigError(
                "no credentials available for any requested provider: "
                + ", ".join(kind.value for kind in spec.requested_kinds)
            )

        results = await self.orchestrator.run(spec, credentials)

        partials_by_kind: dict[ProviderKind, list[DailyPartial]] = {}
        for kind, result in list(results.items()):
            if result.status is not ResultStatus.OK or result.report is None:
                continue
            try:
                partials_by_kind[kind] = normalize(kind, result.report)
            except Exception as exc:
                logger.error(
                    "Cannot normalize %s/%s: %s", kind.value, result.source, exc, exc_info=True
                )
                results[kind] = ProviderResult.failed(
                    kind, result.source, ProviderError(kind.value, result.source, exc)
                )

        records, totals = merge(partials_by_kind)
        merged = MergedMetrics(daily_data=records, totals=totals)
        data_sources = {kind.value: _source_status(result) for kind, result in results.items()}

        payload: dict[str, Any] = merged.model_dump(mode="json")
        payload["availability"] = {
            name: {"enabled": status.enabled, "available": status.available}
            for name, status in data_sources.items()
        }
        await self.cache.put(key, payload, self.ttl_s)

        logger.info(
            "Aggregated %s days for %s (available: %s)",
            len(records),
            key[:12],
            sorted(name for name, status in data_sources.items() if status.available),
        )
        return AggregateResponse(
            daily_data=records,
            totals=totals,
            data_sources=data_sources,
            fingerprint=key,
        )

    async def _resolve_credentials(
        self, spec: RequestSpec, resolver: CredentialResolver
    ) -> dict[ProviderKind, Optional[ProviderCredential]]:
        credentials: dict[ProviderKind, Optional[ProviderCredential]] = {}
        for kind in spec.requested_kinds:
            source = spec.source_for(kind)
            try:
                credentials[kind] = await resolver.resolve(
                    spec.account_refs[kind], kind, source
                )
            except Exception as exc:
                logger.error(
                    "Credential lookup failed for %s/%s: %s", kind.value, source, exc
                )
                credentials[kind] = None
        return credentials


def _source_status(result: ProviderResult) -> DataSourceStatus:
    if result.status is ResultStatus.SKIPPED:
        return DataSourceStatus(
            enabled=False, available=False, source=result.source, reason="not_requested"
        )
    if result.status is ResultStatus.OK:
        return DataSourceStatus(enabled=True, available=True, source=result.source)
    return DataSourceStatus(
        enabled=True, available=False, source=result.source, reason=result.error_kind
    )


def _sources_from_availability(
    spec: RequestSpec, availability: Mapping[str, Mapping[str, bool]]
) -> dict[str, DataSourceStatus]:
    sources: dict[str, DataSourceStatus] = {}
    for kind in ProviderKind:
        flags = availability.get(kind.value) or {}
        enabled = bool(flags.get("enabled"))
        sources[kind.value] = DataSourceStatus(
            enabled=enabled,
            available=bool(flags.get("available")),
            source=spec.source_for(kind),
            reason=None if enabled else "not_requested",
        )
    return sources
