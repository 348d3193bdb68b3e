"""Provider adapters.

One adapter per upstream data source:
- GA4 Data API (visitors, e-commerce sales)
- Meta Marketing API (ad spend)
- Square Orders API (sales)
- Tossdown order feed (sales)
"""
from .base import ProviderAdapter
from .ga4 import GA4SalesAdapter, GA4VisitorsAdapter
from .meta_ads import MetaAdsAdapter
from .registry import AdapterRegistry, default_registry
from .square import SquareSalesAdapter
from .tossdown import TossdownSalesAdapter

__all__ = [
    "AdapterRegistry",
    "GA4SalesAdapter",
    "GA4VisitorsAdapter",
    "MetaAdsAdapter",
    "ProviderAdapter",
    "SquareSalesAdapter",
    "TossdownSalesAdapter",
    "default_registry",
]
