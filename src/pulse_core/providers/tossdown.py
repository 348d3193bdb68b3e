"""Tossdown order feed adapter for daily sales.

The Tossdown endpoint is keyed by eatout id and takes no OAuth token.
"""
import json
from typing import Any, Mapping, Optional

from ..aggregation.types import DateRange, ProviderCredential, ProviderKind
from ..exceptions import ProviderError
from .base import ProviderAdapter


class TossdownSalesAdapter(ProviderAdapter):
    """Fetches Tossdown orders for one business."""

    kind = ProviderKind.SALES
    source = "tossdown"
    requires_token = False

    async def _fetch_rows(
        self,
        token: Optional[str],
        credential: ProviderCredential,
        date_range: DateRange,
        filters: Mapping[str, str],
    ) -> list[dict[str, Any]]:
        form = {
            "from_date": date_range.start.isoformat(),
            "to_date": date_range.end.isoformat(),
            "eatout_id": credential.external_id,
            "source": "biz",
            "limit": "1000",
        }
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        body = await self._request_json(
            "POST", self.settings.tossdown_api_url, headers=headers, form=form
        )

        # The feed sometimes wraps its JSON in a string
        if isinstance(body, str):
            try:
                body = json.loads(body)
            except ValueError as exc:
                raise ProviderError(
                    self.kind.value, self.source, "response is not valid JSON"
                ) from exc

        orders = body.get("result") if isinstance(body, dict) else None
        if not isinstance(orders, list):
            self.logger.info(
                "No orders in Tossdown response for eatout %s", credential.external_id
            )
            return []
        return orders
