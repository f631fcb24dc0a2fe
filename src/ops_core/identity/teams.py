"""Team membership derived from shift history.

Shifts are the source of truth for who works in which team: master data
goes stale, shifts do not. For every (user, team) pair seen in shifts we
keep the shift count and the first and last shift date; a membership is
active when the last shift falls inside the activity window.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

import pandas as pd

from ops_core.labor.shifts import Shift, first_id
from ops_core.normalize import pick, strip_invisibles
from ops_core.utils import coerce_date

logger = logging.getLogger(__name__)

DEFAULT_ACTIVITY_WINDOW_DAYS = 90


@dataclass(frozen=True)
class TeamMembership:
    team_id: str
    team_name: Optional[str]
    is_active: bool
    shift_count: int
    first_shift: str
    last_shift: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "teamId": self.team_id,
            "teamName": self.team_name,
            "isActive": self.is_active,
            "shiftCount": self.shift_count,
            "firstShift": self.first_shift,
            "lastShift": self.last_shift,
        }


def team_names_from_docs(team_docs: Iterable[Mapping[str, Any]]) -> dict[str, str]:
    """Map team id -> team name from Eitje team master data.

    Examples:
        >>> team_names_from_docs([{"id": 7, "name": "Bediening"}])
        {'7': 'Bediening'}

    """
    names: dict[str, str] = {}
    for doc in team_docs:
        team_id = first_id(doc, "eitje_team_id")
        raw = doc.get("raw_data") if isinstance(doc.get("raw_data"), Mapping) else {}
        name = strip_invisibles(pick(doc, "eitje_team_name") or pick(raw, "eitje_team_name"))
        if team_id and name and team_id not in names:
            names[team_id] = name
    return names


def build_team_memberships(
    shifts: Iterable[Shift],
    now: date | datetime,
    team_names: Mapping[str, str] | None = None,
    activity_window_days: int = DEFAULT_ACTIVITY_WINDOW_DAYS,
) -> dict[str, list[TeamMembership]]:
    """Derive team memberships per user from shifts.

    Args:
        shifts: Normalized shifts. Shifts without user or team are ignored.
        now: Aggregation time the activity window is measured from.
        team_names: Team master data names; these win over names on shifts.
        activity_window_days: A membership is active when its last shift is
            at most this many days before ``now``.

    Returns:
        Mapping of user id to memberships, most recent last shift first.

    """
    team_names = team_names or {}
    today = coerce_date(now)
    rows = [
        {"userId": s.user_id, "teamId": s.team_id, "teamName": s.team_name or "", "date": s.date}
        for s in shifts
        if s.user_id and s.team_id
    ]
    if not rows:
        return {}

    df = pd.DataFrame(rows)
    grouped = (
        df.groupby(["userId", "teamId"], sort=True)
        .agg(
            shiftCount=("date", "size"),
            firstShift=("date", "min"),
            lastShift=("date", "max"),
            shiftTeamName=("teamName", lambda s: next((n for n in s if n), "")),
        )
        .reset_index()
    )

    memberships: dict[str, list[TeamMembership]] = {}
    for row in grouped.to_dict(orient="records"):
        last = coerce_date(row["lastShift"])
        active = last is not None and (today - last).days <= activity_window_days
        membership = TeamMembership(
            team_id=row["teamId"],
            team_name=team_names.get(row["teamId"]) or row["shiftTeamName"] or None,
            is_active=bool(active),
            shift_count=int(row["shiftCount"]),
            first_shift=row["firstShift"],
            last_shift=row["lastShift"],
        )
        memberships.setdefault(row["userId"], []).append(membership)

    for teams in memberships.values():
        # most recent first, team id breaks ties
        teams.sort(key=lambda m: m.team_id)
        teams.sort(key=lambda m: m.last_shift, reverse=True)
    logger.debug("Derived team memberships for %d users", len(memberships))
    return memberships
