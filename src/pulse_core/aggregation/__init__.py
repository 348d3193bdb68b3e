"""Multi-source metrics aggregation.

Pipeline per request:
- resolve parameters into a RequestSpec (request)
- resolve provider credentials (credentials)
- fan out to provider adapters concurrently (orchestrator)
- normalize provider reports into daily partials (normalizer)
- merge partials into daily records and totals (merge)
- cache the merged result by fingerprint (cache)
"""
from .cache import (
    CacheEntry,
    InMemoryResponseCache,
    RedisResponseCache,
    ResponseCache,
    fingerprint,
)
from .credentials import (
    BrandCredentialResolver,
    CredentialResolver,
    InMemoryBrandStore,
    JsonFileBrandStore,
    StaticCredentialResolver,
)
from .engine import AggregationEngine
from .merge import merge
from .normalizer import normalize
from .orchestrator import FanOutOrchestrator
from .request import ResolvedRequest, resolve_request
from .types import (
    DailyPartial,
    DateRange,
    ProviderCredential,
    ProviderKind,
    ProviderReport,
    ProviderResult,
    RequestSpec,
    ResultStatus,
)

__all__ = [
    "AggregationEngine",
    "BrandCredentialResolver",
    "CacheEntry",
    "CredentialResolver",
    "DailyPartial",
    "DateRange",
    "FanOutOrchestrator",
    "InMemoryBrandStore",
    "InMemoryResponseCache",
    "JsonFileBrandStore",
    "ProviderCredential",
    "ProviderKind",
    "ProviderReport",
    "ProviderResult",
    "RedisResponseCache",
    "RequestSpec",
    "ResolvedRequest",
    "ResponseCache",
    "ResultStatus",
    "StaticCredentialResolver",
    "fingerprint",
    "merge",
    "normalize",
    "resolve_request",
]
