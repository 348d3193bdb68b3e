"""FastAPI routes for the metrics aggregation API."""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from ..aggregation.credentials import StaticCredentialResolver
from ..aggregation.request import resolve_request
from ..exceptions import ConfigError
from ..schemas.metrics import AggregateResponse
from .services import AggregationServices, get_services


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["metrics"])


class CacheClearResponse(BaseModel):
    """Result of a cache clear request."""

    cleared: int = Field(..., description="Number of cache entries removed")
    fingerprint: Optional[str] = Field(
        None, description="Fingerprint that was cleared (None means all entries)"
    )


class AggregationQuery(BaseModel):
    """Query parameters shared by the aggregation endpoints."""

    brand_id: Optional[str] = None
    ga4_property_id: Optional[str] = None
    meta_account_id: Optional[str] = None
    sales_source: Optional[str] = None
    sales_source_id: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    status: Optional[str] = None
    objective: Optional[str] = None
    cache: Optional[str] = None

    def as_params(self) -> dict[str, Any]:
        params = self.model_dump(exclude={"date_from", "date_to"})
        params["from"] = self.date_from
        params["to"] = self.date_to
        return params


def aggregation_query(
    brand_id: Optional[str] = Query(None, description="Brand whose stored connections to use"),
    ga4_property_id: Optional[str] = Query(None, description="GA4 property id"),
    meta_account_id: Optional[str] = Query(None, description="Meta ad account id"),
    sales_source: Optional[str] = Query(None, description="ga4 | tossdown | square"),
    sales_source_id: Optional[str] = Query(None, description="Account id for the sales source"),
    date_from: Optional[str] = Query(None, alias="from", description="YYYY-MM-DD"),
    date_to: Optional[str] = Query(None, alias="to", description="YYYY-MM-DD"),
    status_filter: Optional[str] = Query(None, alias="status", description="Campaign status"),
    objective: Optional[str] = Query(None, description="Campaign objective (e.g. TRAFFIC)"),
    cache: Optional[str] = Query(None, description="Set to 0 to bypass the cache"),
) -> AggregationQuery:
    return AggregationQuery(
        brand_id=brand_id,
        ga4_property_id=ga4_property_id,
        meta_account_id=meta_account_id,
        sales_source=sales_source,
        sales_source_id=sales_source_id,
        date_from=date_from,
        date_to=date_to,
        status=status_filter,
        objective=objective,
        cache=cache,
    )


async def _aggregate(
    namespace: str,
    query: AggregationQuery,
    response: Response,
    services: AggregationServices,
    sales_source: Optional[str] = None,
) -> AggregateResponse:
    try:
        resolved = await resolve_request(
            query.as_params(), services.brand_store, sales_source=sales_source
        )
        # Without a brand only token-free sources can be served
        resolver = resolved.resolver or StaticCredentialResolver({})
        result = await services.engine(namespace).aggregate(resolved.spec, resolver)
    except ConfigError as exc:
        logger.warning("Rejected %s request: %s", namespace, exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:
        logger.error("Aggregation failed for %s: %s", namespace, exc, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal aggregation error",
        ) from exc

    response.headers["X-Cache"] = result.cache_status
    if result.fingerprint:
        response.headers["X-Cache-Fingerprint"] = result.fingerprint
    return result


@router.get(
    "/overview",
    response_model=AggregateResponse,
    summary="Visitors, ad spend and sales overview",
    description=(
        "Merged daily visitors (GA4), ad spend (Meta) and sales "
        "(Tossdown, Square or GA4) for a date range. Providers that fail "
        "are reported in data_sources and zero-filled."
    ),
)
async def get_overview(
    response: Response,
    query: AggregationQuery = Depends(aggregation_query),
    services: AggregationServices = Depends(get_services),
) -> AggregateResponse:
    return await _aggregate("overview", query, response, services)


@router.get(
    "/combined-analytics",
    response_model=AggregateResponse,
    summary="GA4 visitors and sales with Meta ad spend",
)
async def get_combined_analytics(
    response: Response,
    query: AggregationQuery = Depends(aggregation_query),
    services: AggregationServices = Depends(get_services),
) -> AggregateResponse:
    return await _aggregate("combined", query, response, services, sales_source="ga4")


@router.post(
    "/cache/clear",
    response_model=CacheClearResponse,
    summary="Clear cached aggregation results",
)
async def clear_cache(
    fingerprint: Optional[str] = Query(
        None, description="Fingerprint to clear (omit to clear everything)"
    ),
    services: AggregationServices = Depends(get_services),
) -> CacheClearResponse:
    cleared = await services.cache.clear(fingerprint or None)
    logger.info("Cache clear requested: fingerprint=%s cleared=%s", fingerprint, cleared)
    return CacheClearResponse(cleared=cleared, fingerprint=fingerprint or None)
