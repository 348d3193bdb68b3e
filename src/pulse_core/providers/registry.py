"""Registry of provider adapters keyed by (kind, source)."""
import logging
from typing import Optional

import aiohttp

from ..aggregation.types import ProviderKind
from ..config import Settings
from ..exceptions import ConfigError
from .base import ProviderAdapter
from .ga4 import GA4SalesAdapter, GA4VisitorsAdapter
from .meta_ads import MetaAdsAdapter
from .square import SquareSalesAdapter
from .tossdown import TossdownSalesAdapter


logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Maps a provider kind and source name to an adapter class."""

    def __init__(self) -> None:
        self._adapters: dict[tuple[ProviderKind, str], type[ProviderAdapter]] = {}

    def register(self, adapter_cls: type[ProviderAdapter]) -> type[ProviderAdapter]:
        key = (adapter_cls.kind, adapter_cls.source)
        if key in self._adapters:
            logger.warning(
                "Replacing adapter for %s/%s with %s",
                key[0].value,
                key[1],
                adapter_cls.__name__,
            )
        self._adapters[key] = adapter_cls
        return adapter_cls

    def get(self, kind: ProviderKind, source: str) -> type[ProviderAdapter]:
        try:
            return self._adapters[(kind, source)]
        except KeyError:
            raise ConfigError(
                f"No adapter registered for {kind.value} source '{source}'"
            ) from None

    def create(
        self,
        kind: ProviderKind,
        source: str,
        session: aiohttp.ClientSession,
        settings: Settings,
        logger: Optional[logging.Logger] = None,
    ) -> ProviderAdapter:
        return self.get(kind, source)(session, settings, logger=logger)

    def sources(self, kind: ProviderKind) -> list[str]:
        return sorted(source for k, source in self._adapters if k == kind)

    def __contains__(self, key: tuple[ProviderKind, str]) -> bool:
        return key in self._adapters


def default_registry() -> AdapterRegistry:
    """Registry with every built-in provider."""
    registry = AdapterRegistry()
    for adapter_cls in (
        GA4VisitorsAdapter,
        GA4SalesAdapter,
        MetaAdsAdapter,
        SquareSalesAdapter,
        TossdownSalesAdapter,
    ):
        registry.register(adapter_cls)
    return registry
