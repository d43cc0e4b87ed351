"""
Data Models Layer.

This package contains the Pydantic models and dataclasses that define the core
data structures used throughout the application, such as configuration,
catalog items and relay tallies.
"""

from .config import RelayConfig
from .domain import (
    Catalog,
    CatalogItem,
    FetchOutcome,
    RequestRecord,
    RequestState,
    User,
)
from .stats import RelayResult, RequestSummary

__all__ = [
    "Catalog",
    "CatalogItem",
    "FetchOutcome",
    "RelayConfig",
    "RelayResult",
    "RequestRecord",
    "RequestState",
    "RequestSummary",
    "User",
]
