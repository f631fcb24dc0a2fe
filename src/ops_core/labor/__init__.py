"""Labor aggregation from Eitje shifts, planning and revenue days."""

from ops_core.labor.aggregate import LaborBatch, aggregate_labor_hours
from ops_core.labor.planning import aggregate_planning_hours
from ops_core.labor.revenue import aggregate_revenue_days
from ops_core.labor.shifts import Shift, dedupe_shifts, normalize_shift

__all__ = [
    "LaborBatch",
    "Shift",
    "aggregate_labor_hours",
    "aggregate_planning_hours",
    "aggregate_revenue_days",
    "dedupe_shifts",
    "normalize_shift",
]
