"""Unified configuration for the ops aggregation engine.

This module provides the filesystem layout used by the file-backed store
and the policy constants used by every aggregation pass.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from ops_core.exceptions import ConfigError


@dataclass
class DataPaths:
    """All filesystem paths used by the file-backed store.

    Attributes:
        data_root: Root directory for all collections.

    Directory Structure:
        data_root/
        ├── raw/           # Bronze: documents as ingested (read-only)
        ├── aggregated/    # Silver + gold: line items and marts
        └── control/       # Change markers
    """

    data_root: Path

    @classmethod
    def from_root(cls, data_root: str | Path) -> DataPaths:
        """Create DataPaths from a root directory.

        Args:
            data_root: Root directory for store data.

        Returns:
            DataPaths instance.

        Examples:
            >>> paths = DataPaths.from_root("data")
            >>> paths.raw
            PosixPath('data/raw')

        """
        if isinstance(data_root, str):
            data_root = Path(data_root)
        return cls(data_root=data_root)

    @property
    def raw(self) -> Path:
        """Bronze layer: raw collections."""
        return self.data_root / "raw"

    @property
    def aggregated(self) -> Path:
        """Silver/gold layer: aggregate collections."""
        return self.data_root / "aggregated"

    @property
    def control(self) -> Path:
        """Control plane: change markers."""
        return self.data_root / "control"

    def ensure_dirs(self) -> None:
        """Create all directories in the data structure."""
        for path in [self.raw, self.aggregated, self.control]:
            path.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class CollectionNames:
    """Names of the collections the engine reads and writes."""

    bork_raw: str = "bork_raw_data"
    product_groups: str = "bork_product_groups"
    shifts_raw: str = "eitje_time_registration_shifts_raw"
    planning_raw: str = "eitje_planning_shifts_raw"
    revenue_raw: str = "eitje_revenue_days_raw"
    eitje_users_raw: str = "eitje_users_raw"
    eitje_teams_raw: str = "eitje_teams_raw"
    unified_users: str = "unified_users"
    worker_profiles: str = "worker_profiles"

    sales_line_items: str = "sales_line_items_aggregated"
    sales_daily: str = "sales_daily_aggregated"
    labor_hours: str = "eitje_labor_hours_aggregated"
    labor_hours_team: str = "eitje_labor_hours_team_aggregated"
    planning_hours: str = "eitje_planning_hours_aggregated"
    revenue_days: str = "eitje_revenue_days_aggregated"
    worker_profiles_aggregated: str = "worker_profiles_aggregated"

    markers: str = "aggregation_markers"

    def layer_of(self, collection: str) -> str:
        """Return the DataPaths layer ("raw", "aggregated", "control") of a collection."""
        if collection == self.markers:
            return "control"
        if collection.endswith("_aggregated"):
            return "aggregated"
        return "raw"


@dataclass(frozen=True)
class EngineConfig:
    """Policy constants for aggregation passes.

    Attributes:
        activity_window_days: A team membership is active when its last shift
            is at most this many days before the aggregation time.
        max_hierarchy_depth: Maximum number of parent hops when resolving a
            product group to its main category.
        fallback_hourly_wage: Hourly wage used to estimate wage cost for shifts
            that carry no cost at all.
        max_write_retries: How many times a failed pass is re-run in full
            before the store error is re-raised.
        max_duration_seconds: Optional time budget per pass. A pass that runs
            longer is cancelled. None disables the budget.
        collections: Collection names.
    """

    activity_window_days: int = 90
    max_hierarchy_depth: int = 10
    fallback_hourly_wage: float = 15.0
    max_write_retries: int = 2
    max_duration_seconds: float | None = None
    collections: CollectionNames = field(default_factory=CollectionNames)

    def __post_init__(self) -> None:
        if self.activity_window_days < 0:
            raise ConfigError("activity_window_days must be >= 0")
        if self.max_hierarchy_depth < 1:
            raise ConfigError("max_hierarchy_depth must be >= 1")
        if self.max_write_retries < 0:
            raise ConfigError("max_write_retries must be >= 0")
        if self.max_duration_seconds is not None and self.max_duration_seconds <= 0:
            raise ConfigError("max_duration_seconds must be positive")

    @classmethod
    def from_env(cls, **overrides: object) -> EngineConfig:
        """Build a config from OPS_* environment variables.

        Recognized variables: OPS_ACTIVITY_WINDOW_DAYS, OPS_MAX_HIERARCHY_DEPTH,
        OPS_FALLBACK_HOURLY_WAGE, OPS_MAX_WRITE_RETRIES, OPS_MAX_DURATION_SECONDS.
        Keyword overrides win over the environment.

        Raises:
            ConfigError: If a variable cannot be parsed.

        """
        env_spec = {
            "activity_window_days": ("OPS_ACTIVITY_WINDOW_DAYS", int),
            "max_hierarchy_depth": ("OPS_MAX_HIERARCHY_DEPTH", int),
            "fallback_hourly_wage": ("OPS_FALLBACK_HOURLY_WAGE", float),
            "max_write_retries": ("OPS_MAX_WRITE_RETRIES", int),
            "max_duration_seconds": ("OPS_MAX_DURATION_SECONDS", float),
        }
        values: dict[str, object] = {}
        for name, (var, cast) in env_spec.items():
            raw = os.environ.get(var)
            if raw is None or raw.strip() == "":
                continue
            try:
                values[name] = cast(raw.strip().strip('"').strip("'"))
            except ValueError as e:
                raise ConfigError(f"Invalid value for {var}: {raw!r}") from e
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]

    def with_overrides(self, **changes: object) -> EngineConfig:
        """Return a copy with some fields replaced."""
        return replace(self, **changes)  # type: ignore[arg-type]
