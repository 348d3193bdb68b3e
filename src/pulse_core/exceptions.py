"""Custom exceptions for the metrics aggregation engine."""
from typing import Optional


class AggregationError(Exception):
    """Base exception for all aggregation errors."""


class ConfigError(AggregationError):
    """Raised when a request cannot be resolved into anything fetchable."""

    error_kind = "config"


class ProviderError(AggregationError):
    """Raised for upstream failures (HTTP 4xx/5xx, malformed payload)."""

    error_kind = "provider"

    def __init__(
        self,
        kind: str,
        source: str,
        cause: object,
        status: Optional[int] = None,
    ):
        self.kind = kind
        self.source = source
        self.cause = cause
        self.status = status
        super().__init__(f"{source} ({kind}) failed: {cause}")


class AuthError(ProviderError):
    """Raised when a token is rejected and refresh-and-retry is exhausted."""

    error_kind = "auth"


class ProviderTimeoutError(ProviderError):
    """Raised when an adapter call exceeds its time budget."""

    error_kind = "timeout"

    def __init__(self, kind: str, source: str, timeout_s: float):
        self.timeout_s = timeout_s
        super().__init__(kind, source, f"timed out after {timeout_s:.0f}s")


class TokenExpiredError(AggregationError):
    """Raised inside an adapter when the provider rejects the access token."""

    def __init__(self, source: str, status: int, body: str = ""):
        self.source = source
        self.status = status
        self.body = body
        super().__init__(f"{source} rejected access token: HTTP {status}")
