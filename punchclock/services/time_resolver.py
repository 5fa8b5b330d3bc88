from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.orm import Session

from punchclock.models import WEEKDAY_ORDER, Schedule, Team, UserTeam, Weekday
from punchclock.settings import get_settings

logger = logging.getLogger("punchclock.time")


@dataclass(frozen=True, slots=True)
class PlanningResolution:
    planning_id: int | None
    is_team_default: bool


def _normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


def zone_for_name(timezone_name: str | None) -> ZoneInfo:
    raw_name = (timezone_name or "").strip() or get_settings().default_timezone
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("unknown_timezone_fallback", extra={"timezone": raw_name})
        return ZoneInfo(get_settings().default_timezone)


def zone_for_team(team: Team) -> ZoneInfo:
    return zone_for_name(team.timezone)


def zone_local_now(zone: ZoneInfo, now_utc: datetime | None = None) -> datetime:
    """Wall-clock "now" in ``zone`` as a naive datetime truncated to seconds.

    Clock timestamps are persisted in this form.
    """
    local = _normalize_ts(now_utc).astimezone(zone)
    return local.replace(tzinfo=None, microsecond=0)


def weekday_of(value: datetime) -> Weekday:
    return WEEKDAY_ORDER[value.weekday()]


def current_weekday(timezone_name: str | None, *, now_utc: datetime | None = None) -> Weekday:
    return weekday_of(zone_local_now(zone_for_name(timezone_name), now_utc))


def resolve_planning_id(user_team: UserTeam) -> PlanningResolution:
    if user_team.planning_id is not None:
        return PlanningResolution(planning_id=user_team.planning_id, is_team_default=False)

    team = user_team.team
    default_planning_id = team.default_planning_id if team is not None else None
    return PlanningResolution(planning_id=default_planning_id, is_team_default=True)


def resolve_schedule_for_day(
    db: Session,
    *,
    planning_id: int,
    day: Weekday,
) -> Schedule | None:
    return db.scalar(
        select(Schedule)
        .where(
            Schedule.planning_id == planning_id,
            Schedule.day == day,
        )
        .order_by(Schedule.id.asc())
    )
