"""Fan-out orchestrator: one concurrent adapter call per requested provider.

Every call is awaited to completion (settle-all). A failure, including a
timeout, is captured as that provider's result and never cancels siblings.
"""
import asyncio
import logging
from typing import TYPE_CHECKING, Mapping, Optional

import aiohttp

from ..config import Settings
from ..exceptions import ConfigError, ProviderError, ProviderTimeoutError
from .types import ProviderCredential, ProviderKind, ProviderResult, RequestSpec

if TYPE_CHECKING:
    from ..providers.registry import AdapterRegistry


logger = logging.getLogger(__name__)


class FanOutOrchestrator:
    """Runs provider adapters concurrently for one logical request."""

    def __init__(
        self,
        registry: "AdapterRegistry",
        session: aiohttp.ClientSession,
        settings: Settings,
    ) -> None:
        self.registry = registry
        self.session = session
        self.settings = settings

    async def run(
        self,
        spec: RequestSpec,
        credentials: Mapping[ProviderKind, Optional[ProviderCredential]],
    ) -> dict[ProviderKind, ProviderResult]:
        """Fetch every requested provider and settle all calls.

        Args:
            spec: Resolved request
            credentials: Resolved credential per requested kind (None if absent)

        Returns:
            One ProviderResult per provider kind; unrequested kinds are SKIPPED
        """
        results: dict[ProviderKind, ProviderResult] = {}
        tasks: dict[ProviderKind, asyncio.Task] = {}

        for kind in ProviderKind:
            source = spec.source_for(kind)
            if not spec.account_refs.get(kind):
                results[kind] = ProviderResult.skipped(kind, source)
                continue

            credential = credentials.get(kind)
            if credential is None:
                logger.warning("No credentials for %s/%s", kind.value, source)
                results[kind] = ProviderResult.failed(
                    kind,
                    source,
                    ConfigError(f"no credentials for {kind.value} source '{source}'"),
                )
                continue

            tasks[kind] = asyncio.create_task(
                self._call(kind, source, credential, spec),
                name=f"fetch-{kind.value}-{source}",
            )

        if tasks:
            settled = await asyncio.gather(*tasks.values(), return_exceptions=True)
            for kind, outcome in zip(tasks, settled):
                if isinstance(outcome, ProviderResult):
                    results[kind] = outcome
                else:
                    # _call converts Exception; anything left is BaseException-only
                    results[kind] = ProviderResult.failed(
                        kind,
                        spec.source_for(kind),
                        ProviderError(kind.value, spec.source_for(kind), repr(outcome)),
                    )

        for kind, result in results.items():
            logger.info(
                "Provider %s/%s settled: %s%s",
                kind.value,
                result.source,
                result.status.value,
                f" ({result.error_kind})" if result.error_kind else "",
            )
        return {kind: results[kind] for kind in ProviderKind}

    async def _call(
        self,
        kind: ProviderKind,
        source: str,
        credential: ProviderCredential,
        spec: RequestSpec,
    ) -> ProviderResult:
        try:
            adapter = self.registry.create(kind, source, self.session, self.settings)
        except ConfigError as exc:
            logger.error("%s", exc)
            return ProviderResult.failed(kind, source, exc)

        try:
            report = await asyncio.wait_for(
                adapter.fetch(credential, spec.date_range, spec.filters),
                timeout=adapter.timeout_s,
            )
        except asyncio.TimeoutError:
            logger.error(
                "%s/%s timed out after %ss", kind.value, source, adapter.timeout_s
            )
            return ProviderResult.failed(
                kind, source, ProviderTimeoutError(kind.value, source, adapter.timeout_s)
            )
        except ProviderError as exc:
            logger.error("%s/%s failed: %s", kind.value, source, adapter.redact(str(exc)))
            return ProviderResult.failed(kind, source, exc)
        except Exception as exc:
            logger.exception("Unexpected failure in %s/%s", kind.value, source)
            return ProviderResult.failed(
                kind,
                source,
                ProviderError(kind.value, source, adapter.redact(str(exc))),
            )

        return ProviderResult.ok(report)
