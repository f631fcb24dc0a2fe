"""Ops Core - aggregation and identity engine for restaurant operations data.

This package turns raw point-of-sale (Bork) and workforce (Eitje) documents
into query-ready reporting collections across layers:

- **Bronze (raw)**: documents as ingested (tickets, shifts, users, teams)
- **Silver (core facts)**: one row per sales order line
- **Gold (marts)**: labor hours, planning, revenue days, daily sales,
  unified worker profiles

Module Structure:
    ops_core.sales: Category hierarchy, line-item flattening, daily mart
    ops_core.labor: Shift normalization, labor/planning/revenue marts
    ops_core.identity: Worker identity reconciliation and team membership
    ops_core.tracking: Change markers for incremental passes
    ops_core.store: RawStore interface, MemoryStore and FileStore
    ops_core.api: Trigger functions

Quick Start:
    >>> from ops_core import FileStore, aggregate_sales_line_items, reconcile_worker_profiles
    >>>
    >>> store = FileStore.from_root("data")
    >>>
    >>> # Sales: line items and daily mart for October, changed dates only
    >>> result = aggregate_sales_line_items(store, ("2024-10-01", "2024-10-31"), "loc-1")
    >>> print(result.to_dict())
    >>>
    >>> # Workers: unified profiles with team memberships
    >>> result = reconcile_worker_profiles(store)

Grain Reference:
    Sales:
        - core: sales_line_items_aggregated - order line
        - marts: sales_daily_aggregated - date x location
    Labor:
        - eitje_labor_hours_aggregated - date x environment x team x user
        - eitje_planning_hours_aggregated - date x environment x team
        - eitje_revenue_days_aggregated - date x environment
    Identity:
        - worker_profiles_aggregated - one row per Eitje user
"""

__version__ = "0.1.0"

from ops_core.api import (
    aggregate_labor_hours,
    aggregate_planning_hours,
    aggregate_revenue_days,
    aggregate_sales_daily,
    aggregate_sales_line_items,
    reconcile_worker_profiles,
)
from ops_core.config import CollectionNames, DataPaths, EngineConfig
from ops_core.exceptions import (
    AggregationCancelled,
    ConfigError,
    DataQualityError,
    ETLError,
    IdentityConflictError,
    OpsAPIError,
    StoreUnavailableError,
)
from ops_core.pipeline import AggregationEngine, AggregationResult, CancelToken
from ops_core.store import FileStore, MemoryStore, RawStore
from ops_core.utils import DateRange

__all__ = [
    "AggregationCancelled",
    "AggregationEngine",
    "AggregationResult",
    "CancelToken",
    "CollectionNames",
    "ConfigError",
    "DataPaths",
    "DataQualityError",
    "DateRange",
    "ETLError",
    "EngineConfig",
    "FileStore",
    "IdentityConflictError",
    "MemoryStore",
    "OpsAPIError",
    "RawStore",
    "StoreUnavailableError",
    "__version__",
    "aggregate_labor_hours",
    "aggregate_planning_hours",
    "aggregate_revenue_days",
    "aggregate_sales_daily",
    "aggregate_sales_line_items",
    "reconcile_worker_profiles",
]
