"""Credential resolution over brand connection records.

The brand store is an external key-value lookup: brand id -> connections, where
each connection record carries an access token, an optional refresh token and
the provider-side id (GA4 property, Meta ad account, Tossdown id, Square
location).
"""
import json
import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

import aiofiles

from .types import ProviderCredential, ProviderKind


logger = logging.getLogger(__name__)


# source -> (connection record name, field holding the provider-side id)
CONNECTION_FIELDS: dict[str, tuple[str, str]] = {
    "ga4": ("ga4", "property_id"),
    "meta_ads": ("meta_ads", "ad_account_id"),
    "tossdown": ("tossdown", "tossdown_id"),
    "square": ("square", "location_id"),
}

# Sources whose API is keyed by the account id alone
TOKENLESS_SOURCES = frozenset({"tossdown"})


def _tokenless(
    account_ref: str, kind: ProviderKind, source: str
) -> Optional[ProviderCredential]:
    if source not in TOKENLESS_SOURCES:
        return None
    return ProviderCredential(kind=kind, access_token=None, external_id=account_ref)


class BrandConnectionStore(Protocol):
    """Key-value lookup of a brand's provider connections."""

    async def get_connections(self, brand_id: str) -> dict[str, dict[str, Any]]:
        ...


class CredentialResolver(Protocol):
    """Returns provider credentials for an account reference, or None."""

    async def resolve(
        self, account_ref: str, kind: ProviderKind, source: str
    ) -> Optional[ProviderCredential]:
        ...


class InMemoryBrandStore:
    """Brand connections held in a dict (tests, local runs)."""

    def __init__(self, brands: Optional[Mapping[str, Mapping[str, Any]]] = None) -> None:
        self._brands = {key: dict(value) for key, value in (brands or {}).items()}

    async def get_connections(self, brand_id: str) -> dict[str, dict[str, Any]]:
        brand = self._brands.get(brand_id) or {}
        return dict(brand.get("connections") or {})


class JsonFileBrandStore:
    """Brand connections read from a JSON file: {brand_id: {"connections": {...}}}."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def get_connections(self, brand_id: str) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            raise FileNotFoundError(f"Brand store not found: {self.path}")

        async with aiofiles.open(self.path, mode="r", encoding="utf-8") as handle:
            data = json.loads(await handle.read())

        brand = data.get(brand_id) or {}
        return dict(brand.get("connections") or {})


class BrandCredentialResolver:
    """Resolves credentials from one brand's stored connections."""

    def __init__(self, store: BrandConnectionStore, brand_id: str) -> None:
        self.store = store
        self.brand_id = brand_id
        self._connections: Optional[dict[str, dict[str, Any]]] = None

    async def connections(self) -> dict[str, dict[str, Any]]:
        if self._connections is None:
            self._connections = await self.store.get_connections(self.brand_id)
            logger.info(
                "Loaded connections for brand %s: %s",
                self.brand_id,
                sorted(self._connections),
            )
        return self._connections

    async def resolve(
        self, account_ref: str, kind: ProviderKind, source: str
    ) -> Optional[ProviderCredential]:
        record_name, _ = CONNECTION_FIELDS.get(source, (source, "id"))
        record = (await self.connections()).get(record_name)
        if not record:
            logger.info(
                "Brand %s has no %s connection", self.brand_id, record_name
            )
            return _tokenless(account_ref, kind, source)

        return ProviderCredential(
            kind=kind,
            access_token=record.get("access_token"),
            refresh_token=record.get("refresh_token"),
            external_id=account_ref,
        )


class StaticCredentialResolver:
    """Fixed credentials keyed by source name.

    Args:
        tokens: source -> {"access_token": ..., "refresh_token": ...}
    """

    def __init__(self, tokens: Mapping[str, Mapping[str, Optional[str]]]) -> None:
        self.tokens = {key: dict(value) for key, value in tokens.items()}

    async def resolve(
        self, account_ref: str, kind: ProviderKind, source: str
    ) -> Optional[ProviderCredential]:
        record = self.tokens.get(source)
        if record is None:
            return _tokenless(account_ref, kind, source)
        return ProviderCredential(
            kind=kind,
            access_token=record.get("access_token"),
            refresh_token=record.get("refresh_token"),
            external_id=account_ref,
        )
