"""Sales aggregation: category hierarchy, line items and daily mart.

Layers:
    - Raw (bronze): ``bork_raw_data`` ticket payloads
    - Core (silver): ``sales_line_items_aggregated``, one row per order line
    - Marts (gold): ``sales_daily_aggregated``, one row per (date, location)
"""

from ops_core.sales.categories import CategoryMatch, CategoryResolver, ProductGroup, build_resolver
from ops_core.sales.line_items import LineItemBatch, aggregate_line_items
from ops_core.sales.marts import build_sales_daily

__all__ = [
    "CategoryMatch",
    "CategoryResolver",
    "LineItemBatch",
    "ProductGroup",
    "aggregate_line_items",
    "build_resolver",
    "build_sales_daily",
]
