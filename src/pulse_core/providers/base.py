"""Base class for provider adapters.

An adapter runs one authenticated query against a provider and returns the
provider-native rows. It owns token-expiry detection and the single
refresh-and-retry cycle; every other failure surfaces as ProviderError and is
not retried here.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

import aiohttp

from ..aggregation.types import (
    DateRange,
    ProviderCredential,
    ProviderKind,
    ProviderReport,
)
from ..config import Settings
from ..exceptions import (
    AuthError,
    ProviderError,
    ProviderTimeoutError,
    TokenExpiredError,
)


def redact_text(text: str, secrets: list[Optional[str]]) -> str:
    if not text:
        return text
    redacted = text
    for secret in secrets:
        if secret:
            redacted = redacted.replace(secret, "[REDACTED]")
    return redacted


class ProviderAdapter(ABC):
    """Capability interface shared by every provider implementation."""

    kind: ProviderKind
    source: str
    requires_token = True

    def __init__(
        self,
        session: aiohttp.ClientSession,
        settings: Settings,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize adapter.

        Args:
            session: Injected aiohttp ClientSession
            settings: Process settings (OAuth clients, endpoints, timeouts)
            logger: Optional logger instance
        """
        self.session = session
        self.settings = settings
        self.logger = logger or logging.getLogger(type(self).__module__)
        self._secrets: list[Optional[str]] = list(settings.secrets())

    @property
    def timeout_s(self) -> float:
        return self.settings.timeout_for(self.source)

    async def fetch(
        self,
        credential: ProviderCredential,
        date_range: DateRange,
        filters: Mapping[str, str],
    ) -> ProviderReport:
        """Run the provider query, refreshing the token at most once.

        Raises:
            AuthError: Token rejected and no refresh possible, refresh failed,
                or the retry after refresh was rejected again
            ProviderError: Any non-auth failure
        """
        token = credential.access_token
        self._secrets.extend([credential.access_token, credential.refresh_token])

        if self.requires_token and not token and not credential.refresh_token:
            raise AuthError(self.kind.value, self.source, "no access token available")

        try:
            if self.requires_token and not token:
                raise TokenExpiredError(self.source, 401, "missing access token")
            rows = await self._guarded(
                self._fetch_rows(token, credential, date_range, filters)
            )
        except TokenExpiredError as exc:
            if not credential.refresh_token:
                self.logger.error(
                    "%s rejected token and no refresh token is available", self.source
                )
                raise AuthError(self.kind.value, self.source, exc, exc.status) from exc

            self.logger.info("%s access token expired, refreshing", self.source)
            token = await self._refresh_once(credential)
            self._secrets.append(token)

            try:
                rows = await self._guarded(
                    self._fetch_rows(token, credential, date_range, filters)
                )
            except TokenExpiredError as retry_exc:
                self.logger.error(
                    "%s rejected refreshed token, giving up", self.source
                )
                raise AuthError(
                    self.kind.value, self.source, retry_exc, retry_exc.status
                ) from retry_exc

        self.logger.info(
            "Fetched %s %s rows for %s..%s",
            len(rows),
            self.source,
            date_range.start.isoformat(),
            date_range.end.isoformat(),
        )
        return ProviderReport(kind=self.kind, source=self.source, rows=rows)

    async def _refresh_once(self, credential: ProviderCredential) -> str:
        try:
            token = await self._guarded(self.refresh_access_token(credential))
        except (TokenExpiredError, ProviderError) as exc:
            self.logger.error(
                "%s token refresh failed: %s", self.source, self.redact(str(exc))
            )
            raise AuthError(
                self.kind.value, self.source, f"token refresh failed: {self.redact(str(exc))}"
            ) from exc

        if not token:
            raise AuthError(
                self.kind.value, self.source, "token refresh returned no access token"
            )
        self.logger.info("%s token refreshed", self.source)
        return token

    async def _guarded(self, coro):
        """Await an adapter coroutine, mapping transport errors to ProviderError."""
        try:
            return await coro
        except (TokenExpiredError, ProviderError):
            raise
        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError(
                self.kind.value, self.source, self.timeout_s
            ) from exc
        except aiohttp.ClientError as exc:
            raise ProviderError(
                self.kind.value, self.source, f"network error: {self.redact(str(exc))}"
            ) from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(
                self.kind.value, self.source, f"malformed response: {exc}"
            ) from exc

    @abstractmethod
    async def _fetch_rows(
        self,
        token: Optional[str],
        credential: ProviderCredential,
        date_range: DateRange,
        filters: Mapping[str, str],
    ) -> list[dict[str, Any]]:
        """Issue the provider request(s) and return raw rows."""

    async def refresh_access_token(self, credential: ProviderCredential) -> str:
        """Exchange the refresh token for a new access token."""
        raise ProviderError(
            self.kind.value, self.source, "token refresh is not supported"
        )

    def is_token_expired(self, status: int, body: Any) -> bool:
        return status == 401

    def redact(self, text: str) -> str:
        return redact_text(text, self._secrets)

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[dict[str, str]] = None,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[dict[str, Any]] = None,
        form: Optional[dict[str, Any]] = None,
        check_expiry: bool = True,
    ) -> Any:
        """Send one request and decode its JSON body.

        Raises:
            TokenExpiredError: Provider signalled an expired/invalid token
            ProviderError: Non-2xx status or undecodable body
        """
        timeout = aiohttp.ClientTimeout(total=self.timeout_s, connect=10)
        send = self.session.post if method.upper() == "POST" else self.session.get

        kwargs: dict[str, Any] = {"headers": headers or {}, "timeout": timeout}
        if params is not None:
            kwargs["params"] = params
        if json_body is not None:
            kwargs["json"] = json_body
        if form is not None:
            kwargs["data"] = form

        async with send(url, **kwargs) as resp:
            response_text = await resp.text()
            body = _decode(response_text)

            if check_expiry and self.is_token_expired(resp.status, body):
                raise TokenExpiredError(
                    self.source, resp.status, self.redact(response_text[:200])
                )

            if resp.status >= 400:
                self.logger.error(
                    "%s API error (%s): %s",
                    self.source,
                    resp.status,
                    self.redact(response_text[:500]),
                )
                raise ProviderError(
                    self.kind.value,
                    self.source,
                    f"HTTP {resp.status}: {self.redact(response_text[:200])}",
                    status=resp.status,
                )

            if body is None:
                raise ProviderError(
                    self.kind.value,
                    self.source,
                    f"non-JSON response: {self.redact(response_text[:200])}",
                    status=resp.status,
                )

            return body


def _decode(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None
