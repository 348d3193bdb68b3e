"""Pulse HTTP API layer."""
from .routes import router
from .services import AggregationServices, get_services, open_services

__all__ = ["AggregationServices", "get_services", "open_services", "router"]
