"""Worker identity reconciliation and team membership."""

from ops_core.identity.reconcile import (
    DuplicateReport,
    IdentityLookup,
    ReconcileResult,
    build_identity_lookup,
    dedupe_profiles,
    reconcile,
)
from ops_core.identity.teams import TeamMembership, build_team_memberships

__all__ = [
    "DuplicateReport",
    "IdentityLookup",
    "ReconcileResult",
    "TeamMembership",
    "build_identity_lookup",
    "build_team_memberships",
    "dedupe_profiles",
    "reconcile",
]
