"""Long-lived collaborators shared by every API request."""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import aiohttp
from fastapi import Request
from redis.asyncio import Redis

from ..aggregation.cache import InMemoryResponseCache, RedisResponseCache, ResponseCache
from ..aggregation.credentials import (
    BrandConnectionStore,
    InMemoryBrandStore,
    JsonFileBrandStore,
)
from ..aggregation.engine import AggregationEngine
from ..aggregation.orchestrator import FanOutOrchestrator
from ..aggregation.types import ProviderKind
from ..config import Settings
from ..providers.registry import AdapterRegistry, default_registry


logger = logging.getLogger(__name__)


@dataclass
class AggregationServices:
    """Process-lifetime dependencies injected into the route handlers."""

    settings: Settings
    session: aiohttp.ClientSession
    cache: ResponseCache
    registry: AdapterRegistry
    brand_store: BrandConnectionStore

    def engine(self, namespace: str) -> AggregationEngine:
        orchestrator = FanOutOrchestrator(self.registry, self.session, self.settings)
        return AggregationEngine(
            orchestrator,
            self.cache,
            namespace=namespace,
            ttl_s=self.settings.ttl_for(namespace),
        )


def _build_cache(redis: Optional[Redis]) -> ResponseCache:
    if redis is not None:
        return RedisResponseCache(redis)
    return InMemoryResponseCache()


def _build_brand_store(settings: Settings) -> BrandConnectionStore:
    if settings.brand_store_path:
        return JsonFileBrandStore(settings.brand_store_path)
    logger.warning("PULSE_BRAND_STORE_PATH not set, brand lookups will find nothing")
    return InMemoryBrandStore()


@asynccontextmanager
async def open_services(settings: Settings) -> AsyncIterator[AggregationServices]:
    """Create the HTTP session, cache and registry; close them on exit."""
    redis: Optional[Redis] = None
    if settings.cache_backend == "redis":
        redis = Redis.from_url(settings.redis_url, decode_responses=False)

    timeout = aiohttp.ClientTimeout(total=300, connect=30)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        try:
            services = AggregationServices(
                settings=settings,
                session=session,
                cache=_build_cache(redis),
                registry=default_registry(),
                brand_store=_build_brand_store(settings),
            )
            logger.info(
                "Aggregation services ready (cache=%s, sources=%s)",
                settings.cache_backend,
                {kind.value: services.registry.sources(kind) for kind in ProviderKind},
            )
            yield services
        finally:
            if redis is not None:
                await redis.aclose()


def get_services(request: Request) -> AggregationServices:
    return request.app.state.services
