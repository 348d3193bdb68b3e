"""Google Analytics 4 Data API adapters (visitors and e-commerce sales)."""
from typing import Any, Mapping, Optional

from ..aggregation.types import (
    DateRange,
    ProviderCredential,
    ProviderKind,
)
from ..exceptions import ProviderError
from .base import ProviderAdapter


GA4_REPORT_URL = "https://analyticsdata.googleapis.com/v1beta/properties/{property_id}:runReport"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

GA4_PAGE_SIZE = 10000


class _GA4ReportAdapter(ProviderAdapter):
    """Shared runReport plumbing; subclasses choose dimensions and metrics."""

    source = "ga4"
    dimensions: tuple[str, ...] = ()
    metrics: tuple[str, ...] = ()

    def build_request(self, date_range: DateRange, offset: int) -> dict[str, Any]:
        return {
            "dateRanges": [
                {
                    "startDate": date_range.start.isoformat(),
                    "endDate": date_range.end.isoformat(),
                }
            ],
            "dimensions": [{"name": name} for name in self.dimensions],
            "metrics": [{"name": name} for name in self.metrics],
            "limit": GA4_PAGE_SIZE,
            "offset": offset,
        }

    async def _fetch_rows(
        self,
        token: Optional[str],
        credential: ProviderCredential,
        date_range: DateRange,
        filters: Mapping[str, str],
    ) -> list[dict[str, Any]]:
        url = GA4_REPORT_URL.format(property_id=credential.external_id)
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

        rows: list[dict[str, Any]] = []
        offset = 0
        while True:
            body = await self._request_json(
                "POST",
                url,
                headers=headers,
                json_body=self.build_request(date_range, offset),
            )
            page = body.get("rows") or []
            rows.extend(page)

            row_count = int(body.get("rowCount") or 0)
            offset += len(page)
            if not page or offset >= row_count:
                break

        self.logger.debug(
            "GA4 property %s returned %s rows (%s)",
            credential.external_id,
            len(rows),
            ",".join(self.metrics),
        )
        return rows

    async def refresh_access_token(self, credential: ProviderCredential) -> str:
        client_id = self.settings.google_client_id
        client_secret = self.settings.google_client_secret
        if not client_id or not client_secret:
            raise ProviderError(
                self.kind.value,
                self.source,
                "GOOGLE_OAUTH_CLIENT_ID and GOOGLE_OAUTH_CLIENT_SECRET must be set",
            )

        body = await self._request_json(
            "POST",
            GOOGLE_TOKEN_URL,
            form={
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": credential.refresh_token,
                "grant_type": "refresh_token",
            },
            check_expiry=False,
        )
        return body.get("access_token")


class GA4VisitorsAdapter(_GA4ReportAdapter):
    """Daily users, sessions and engaged sessions per default channel group."""

    kind = ProviderKind.ANALYTICS
    dimensions = ("date", "sessionDefaultChannelGroup")
    metrics = ("totalUsers", "sessions", "engagedSessions")


class GA4SalesAdapter(_GA4ReportAdapter):
    """Daily e-commerce purchases and revenue."""

    kind = ProviderKind.SALES
    dimensions = ("date",)
    metrics = ("ecommercePurchases", "purchaseRevenue")
