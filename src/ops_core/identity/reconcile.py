"""Worker identity reconciliation across Eitje, Bork and the unified registry.

Three sources describe the same person with unrelated identifiers:

- ``unified_users``: the internal registry. Each user carries
  ``systemMappings`` such as ``{"system": "eitje", "externalId": "42"}``
  and is the authoritative source for names.
- ``eitje_users_raw``: raw Eitje user export (``id``, ``first_name``,
  ``last_name``), used when the registry has no name.
- Bork waiter names embedded in ticket payloads.

``worker_profiles`` rows are keyed by ``eitje_user_id``, which must be
unique. Duplicate rows are a data-entry defect: the earliest-created row
wins, the others are reported and left out of the aggregate.

Examples:
    >>> result = reconcile(
    ...     unified_users=[{"_id": "u1", "firstName": "Ana", "lastName": "Vos",
    ...                     "systemMappings": [{"system": "eitje", "externalId": "1"}]}],
    ...     eitje_raw_users=[],
    ...     bork_waiter_names=["Ana Vos"],
    ...     worker_profiles=[{"_id": "p1", "eitje_user_id": 1}],
    ...     shifts=[],
    ... )
    >>> result.profiles[0]["name"], result.profiles[0]["borkWaiterName"]
    ('Ana Vos', 'Ana Vos')

"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Optional

from ops_core.exceptions import IdentityConflictError
from ops_core.identity.teams import (
    DEFAULT_ACTIVITY_WINDOW_DAYS,
    build_team_memberships,
    team_names_from_docs,
)
from ops_core.labor.shifts import Shift
from ops_core.normalize import normalize_name, pick, pick_path, strip_invisibles, to_key
from ops_core.utils import coerce_datetime, utc_now

logger = logging.getLogger(__name__)

_LATEST = datetime.max


@dataclass(frozen=True)
class DuplicateReport:
    """Profiles sharing one eitjeUserId: which one was kept, which were dropped."""

    eitje_user_id: str
    kept_profile_id: Optional[str]
    dropped_profile_ids: tuple[Optional[str], ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "eitjeUserId": self.eitje_user_id,
            "keptProfileId": self.kept_profile_id,
            "droppedProfileIds": list(self.dropped_profile_ids),
        }


@dataclass(frozen=True)
class IdentityLookup:
    """Immutable identity maps built once per reconciliation pass.

    Attributes:
        names: eitjeUserId -> display name (registry first, raw Eitje fallback).
        unified_ids: eitjeUserId -> unified user id.
        bork_names: normalized Bork waiter name -> eitjeUserId, from
            ``systemMappings`` with ``system == "bork"``.
        by_name: normalized full name -> eitjeUserId, for names that
            identify exactly one worker.
    """

    names: Mapping[str, str]
    unified_ids: Mapping[str, str]
    bork_names: Mapping[str, str]
    by_name: Mapping[str, str]

    def match_waiter(self, waiter_name: Any) -> Optional[str]:
        """Resolve a Bork waiter name to an eitjeUserId, or None."""
        key = normalize_name(waiter_name)
        if not key:
            return None
        return self.bork_names.get(key) or self.by_name.get(key)


@dataclass
class ReconcileResult:
    profiles: list[dict[str, Any]] = field(default_factory=list)
    duplicates: list[DuplicateReport] = field(default_factory=list)
    unmatched_shift_users: list[str] = field(default_factory=list)
    unmatched_waiter_names: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _full_name(first: Any, last: Any, name: Any) -> Optional[str]:
    first = strip_invisibles(first) or ""
    last = strip_invisibles(last) or ""
    if first and last:
        return f"{first} {last}"
    return strip_invisibles(name) or None


def _mappings(user: Mapping[str, Any], system: str) -> list[str]:
    mappings = user.get("systemMappings")
    if not isinstance(mappings, list):
        return []
    out = []
    for m in mappings:
        if isinstance(m, Mapping) and str(m.get("system", "")).lower() == system:
            external = to_key(m.get("externalId"))
            if external:
                out.append(external)
    return out


def _eitje_user_sources(doc: Mapping[str, Any]) -> list[Any]:
    return [doc, doc.get("raw_data"), doc.get("extracted"), doc.get("rawApiResponse")]


def build_identity_lookup(
    unified_users: Iterable[Mapping[str, Any]],
    eitje_raw_users: Iterable[Mapping[str, Any]],
) -> IdentityLookup:
    """Build the identity maps for one pass.

    Registry users explicitly marked ``isActive: False`` are ignored. When
    several registry users map to the same Eitje id, the first one wins.
    """
    names: dict[str, str] = {}
    unified_ids: dict[str, str] = {}
    bork_names: dict[str, str] = {}

    for user in unified_users:
        if user.get("isActive") is False:
            continue
        eitje_ids = _mappings(user, "eitje")
        if not eitje_ids:
            continue
        eitje_id = eitje_ids[0]
        name = _full_name(user.get("firstName"), user.get("lastName"), user.get("name"))
        if name and eitje_id not in names:
            names[eitje_id] = name
        unified_id = to_key(user.get("_id") or user.get("id"))
        if unified_id and eitje_id not in unified_ids:
            unified_ids[eitje_id] = unified_id
        for waiter in _mappings(user, "bork"):
            bork_names.setdefault(normalize_name(waiter), eitje_id)

    fallback = 0
    for doc in eitje_raw_users:
        sources = _eitje_user_sources(doc)
        eitje_id = to_key(pick_path(sources, "eitje_id"))
        if not eitje_id or eitje_id in names:
            continue
        parts = (pick_path(sources, "first_name"), pick_path(sources, "last_name"))
        name = strip_invisibles(" ".join(str(p) for p in parts if p))
        if name:
            names[eitje_id] = name
            fallback += 1

    counts: dict[str, int] = {}
    for name in names.values():
        key = normalize_name(name)
        counts[key] = counts.get(key, 0) + 1
    by_name = {normalize_name(n): i for i, n in names.items() if counts[normalize_name(n)] == 1}

    logger.debug(
        "Identity lookup: %d names (%d from raw Eitje users), %d Bork mappings",
        len(names),
        fallback,
        len(bork_names),
    )
    return IdentityLookup(
        names=MappingProxyType(names),
        unified_ids=MappingProxyType(unified_ids),
        bork_names=MappingProxyType(bork_names),
        by_name=MappingProxyType(by_name),
    )


def _profile_id(profile: Mapping[str, Any]) -> Optional[str]:
    return to_key(profile.get("_id") or profile.get("id"))


def _profile_eitje_id(profile: Mapping[str, Any]) -> Optional[str]:
    return to_key(pick(profile, ["eitje_user_id", "eitjeUserId"]))


def _created_key(profile: Mapping[str, Any]) -> datetime:
    created = coerce_datetime(pick(profile, ["created_at", "createdAt"]))
    # missing timestamps sort after every real one
    return created.replace(tzinfo=None) if created else _LATEST


def dedupe_profiles(
    profiles: Iterable[Mapping[str, Any]],
) -> tuple[list[Mapping[str, Any]], list[DuplicateReport]]:
    """Keep one profile per eitjeUserId.

    Profiles are stably sorted by ``created_at`` (missing last), so input
    order breaks ties; the first profile of each eitjeUserId wins. Profiles
    without an eitjeUserId are all kept.

    Returns:
        Tuple of (kept profiles in sorted order, duplicate reports).

    """
    ordered = sorted(profiles, key=_created_key)
    kept: list[Mapping[str, Any]] = []
    groups: dict[str, list[Mapping[str, Any]]] = {}
    for profile in ordered:
        eitje_id = _profile_eitje_id(profile)
        if eitje_id is None:
            kept.append(profile)
            continue
        if eitje_id not in groups:
            kept.append(profile)
        groups.setdefault(eitje_id, []).append(profile)

    reports = []
    for eitje_id, group in groups.items():
        if len(group) < 2:
            continue
        report = DuplicateReport(
            eitje_user_id=eitje_id,
            kept_profile_id=_profile_id(group[0]),
            dropped_profile_ids=tuple(_profile_id(p) for p in group[1:]),
        )
        logger.warning(
            "Duplicate eitjeUserId %s: kept profile %s, dropped %s",
            eitje_id,
            report.kept_profile_id,
            list(report.dropped_profile_ids),
        )
        reports.append(report)
    return kept, reports


def match_waiters(
    lookup: IdentityLookup,
    waiter_names: Iterable[Any],
) -> tuple[dict[str, str], list[str]]:
    """Resolve Bork waiter names.

    Returns:
        Tuple of (eitjeUserId -> first matching waiter name, unmatched names).
        Names are visited in sorted order so the result is deterministic.

    """
    distinct = sorted({s for s in (strip_invisibles(n) for n in waiter_names) if s})
    matched: dict[str, str] = {}
    unmatched: list[str] = []
    for waiter in distinct:
        eitje_id = lookup.match_waiter(waiter)
        if eitje_id is None:
            unmatched.append(waiter)
        else:
            matched.setdefault(eitje_id, waiter)
    return matched, unmatched


def reconcile(
    unified_users: Iterable[Mapping[str, Any]],
    eitje_raw_users: Iterable[Mapping[str, Any]],
    bork_waiter_names: Iterable[Any],
    worker_profiles: Iterable[Mapping[str, Any]],
    shifts: Iterable[Shift],
    teams: Iterable[Mapping[str, Any]] = (),
    now: datetime | None = None,
    strict: bool = False,
    activity_window_days: int = DEFAULT_ACTIVITY_WINDOW_DAYS,
) -> ReconcileResult:
    """Merge worker identity from all sources into aggregated profiles.

    Args:
        unified_users: ``unified_users`` documents.
        eitje_raw_users: ``eitje_users_raw`` documents.
        bork_waiter_names: Waiter names seen in Bork tickets.
        worker_profiles: ``worker_profiles`` documents.
        shifts: Normalized shifts, used for team membership.
        teams: ``eitje_teams_raw`` documents for team names.
        now: Aggregation time for the activity window. Defaults to now (UTC).
        strict: Raise instead of continuing when duplicates are found.
        activity_window_days: Activity window for team memberships.

    Returns:
        ReconcileResult with one profile per worker (no two sharing an
        eitjeUserId), the duplicate reports, and unmatched shift users and
        waiter names.

    Raises:
        IdentityConflictError: If ``strict`` is set and duplicates exist.

    """
    now = coerce_datetime(now) if now else utc_now()
    shifts = list(shifts)
    lookup = build_identity_lookup(unified_users, eitje_raw_users)
    kept, duplicates = dedupe_profiles(worker_profiles)
    if strict and duplicates:
        raise IdentityConflictError(
            f"{len(duplicates)} duplicate eitjeUserId group(s): "
            + ", ".join(d.eitje_user_id for d in duplicates)
        )

    memberships = build_team_memberships(
        shifts,
        now=now,
        team_names=team_names_from_docs(teams),
        activity_window_days=activity_window_days,
    )
    waiter_by_eitje, unmatched_waiters = match_waiters(lookup, bork_waiter_names)

    result = ReconcileResult(duplicates=duplicates, unmatched_waiter_names=unmatched_waiters)
    for report in duplicates:
        result.warnings.append(
            f"Duplicate eitjeUserId {report.eitje_user_id}: kept {report.kept_profile_id}, "
            f"dropped {', '.join(str(p) for p in report.dropped_profile_ids)}"
        )

    known_ids = set()
    for profile in kept:
        eitje_id = _profile_eitje_id(profile)
        if eitje_id:
            known_ids.add(eitje_id)
        name = lookup.names.get(eitje_id) if eitje_id else None
        if name is None:
            message = f"No name found for worker profile {_profile_id(profile)} (eitjeUserId {eitje_id})"
            logger.warning(message)
            result.warnings.append(message)
        effective_to = coerce_datetime(pick(profile, ["effective_to", "effectiveTo"]))
        result.profiles.append(
            {
                "profileId": _profile_id(profile),
                "unifiedUserId": lookup.unified_ids.get(eitje_id) if eitje_id else None,
                "eitjeUserId": eitje_id,
                "borkWaiterName": waiter_by_eitje.get(eitje_id) if eitje_id else None,
                "name": name,
                "locationId": to_key(pick(profile, ["location_id", "locationId"])),
                "contractType": pick(profile, ["contract_type", "contractType"]),
                "contractHours": pick(profile, ["contract_hours", "contractHours"]),
                "hourlyWage": pick(profile, ["hourly_wage", "hourlyWage"]),
                "isActive": effective_to is None or effective_to > now,
                "teams": [m.to_dict() for m in memberships.get(eitje_id, [])] if eitje_id else [],
            }
        )

    result.unmatched_shift_users = sorted(
        {s.user_id for s in shifts if s.user_id and s.user_id not in known_ids}
    )
    if result.unmatched_shift_users:
        logger.warning(
            "%d shift users have no worker profile: %s",
            len(result.unmatched_shift_users),
            ", ".join(result.unmatched_shift_users[:20]),
        )
    logger.info(
        "Reconciled %d worker profiles (%d duplicate groups, %d unmatched waiters)",
        len(result.profiles),
        len(duplicates),
        len(unmatched_waiters),
    )
    return result
