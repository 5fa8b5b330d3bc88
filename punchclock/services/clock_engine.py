from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from punchclock.db import commit_or_raise
from punchclock.errors import ConflictError, NotFoundError
from punchclock.models import Clock, Schedule, Team, UserTeam, Weekday
from punchclock.settings import get_settings
from punchclock.services.time_resolver import (
    PlanningResolution,
    resolve_planning_id,
    resolve_schedule_for_day,
    weekday_of,
    zone_for_team,
    zone_local_now,
)

logger = logging.getLogger("punchclock.clock")


class ClockState(str, enum.Enum):
    CLOCKED_OUT = "CLOCKED_OUT"
    CLOCKED_IN = "CLOCKED_IN"


class PunchIntent(str, enum.Enum):
    AUTO = "AUTO"
    IN = "IN"
    OUT = "OUT"


class PunchAction(str, enum.Enum):
    CLOCK_IN = "clock_in"
    CLOCK_OUT = "clock_out"


@dataclass(frozen=True, slots=True)
class WorkDayWindow:
    anchor: date
    start: datetime
    end: datetime
    is_night_shift: bool

    def contains(self, value: datetime) -> bool:
        return self.start <= value < self.end


@dataclass(slots=True)
class PunchContext:
    user_team: UserTeam
    team: Team
    resolution: PlanningResolution
    planning_id: int
    day: Weekday
    schedule: Schedule
    local_now: datetime
    window: WorkDayWindow
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class PunchResult:
    action: PunchAction
    state: ClockState
    clock: Clock
    planning_id: int
    is_team_default: bool
    work_day: date
    day: Weekday
    warnings: list[str]
    is_late: bool | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _minutes_of_day(value: time | datetime) -> int:
    return value.hour * 60 + value.minute


def is_night_shift(schedule: Schedule) -> bool:
    return schedule.time_out.hour < schedule.time_in.hour


def compute_work_day_window(
    schedule: Schedule,
    local_now: datetime,
    *,
    cutoff_hour: int | None = None,
) -> WorkDayWindow:
    """Return the 24h window the punch at ``local_now`` belongs to.

    A night shift punched before the cutoff hour (noon by default) belongs to
    the work day that started on the previous calendar date.
    """
    if cutoff_hour is None:
        cutoff_hour = get_settings().night_shift_cutoff_hour
    night_shift = is_night_shift(schedule)
    anchor = local_now.date()
    if night_shift and local_now.hour < cutoff_hour:
        anchor = anchor - timedelta(days=1)
    start = datetime.combine(anchor, time.min)
    return WorkDayWindow(
        anchor=anchor,
        start=start,
        end=start + timedelta(days=1),
        is_night_shift=night_shift,
    )


def work_day_for_arrival(db: Session, *, planning_id: int | None, arrival_time: datetime) -> date:
    """Work-day anchor of a zone-local arrival, as a punch at that moment would record it."""
    if planning_id is None:
        return arrival_time.date()
    schedule = resolve_schedule_for_day(db, planning_id=planning_id, day=weekday_of(arrival_time))
    if schedule is None:
        return arrival_time.date()
    return compute_work_day_window(schedule, arrival_time).anchor


def evaluate_arrival(
    *,
    schedule: Schedule,
    local_now: datetime,
    lateness_limit: int,
) -> tuple[bool, str | None]:
    current = _minutes_of_day(local_now)
    scheduled = _minutes_of_day(schedule.time_in)
    if current > scheduled:
        late_minutes = current - scheduled
        if late_minutes > lateness_limit:
            return True, (
                f"Lateness limit exceeded: late by {late_minutes} minutes "
                f"(limit is {lateness_limit} minutes)"
            )
        return True, f"Late by {late_minutes} minutes"
    if current < scheduled:
        return False, f"Early by {scheduled - current} minutes"
    return False, None


def evaluate_departure(*, schedule: Schedule, local_now: datetime) -> str | None:
    current = _minutes_of_day(local_now)
    scheduled = _minutes_of_day(schedule.time_out)
    if current < scheduled:
        return f"Leaving {scheduled - current} minutes early"
    if current > scheduled:
        return f"Working {current - scheduled} minutes overtime"
    return None


def detect_anomalies(
    db: Session,
    *,
    user_team_id: int,
    work_day_start: datetime,
    limit: int | None = None,
) -> list[str]:
    if limit is None:
        limit = get_settings().anomaly_scan_limit
    recent_clocks = list(
        db.scalars(
            select(Clock)
            .where(Clock.user_team_id == user_team_id)
            .order_by(Clock.arrival_time.desc(), Clock.id.desc())
            .limit(limit)
        ).all()
    )
    warnings: list[str] = []
    for clock in recent_clocks:
        if clock.departure_time is not None:
            continue
        if clock.arrival_time < work_day_start:
            warnings.append(
                f"Unclosed clock-in from {clock.arrival_time.date().isoformat()} was never clocked out"
            )
    return warnings


def find_open_clock(db: Session, *, user_team_id: int) -> Clock | None:
    return db.scalar(
        select(Clock)
        .where(
            Clock.user_team_id == user_team_id,
            Clock.departure_time.is_(None),
        )
        .order_by(Clock.arrival_time.desc(), Clock.id.desc())
        .limit(1)
    )


def derive_state(open_clock: Clock | None) -> ClockState:
    if open_clock is None:
        return ClockState.CLOCKED_OUT
    return ClockState.CLOCKED_IN


def _find_clocks_in_window(
    db: Session,
    *,
    user_team_id: int,
    planning_id: int,
    window: WorkDayWindow,
) -> list[Clock]:
    return list(
        db.scalars(
            select(Clock)
            .where(
                Clock.user_team_id == user_team_id,
                Clock.planning_id == planning_id,
                Clock.arrival_time >= window.start,
                Clock.arrival_time < window.end,
            )
            .order_by(Clock.arrival_time.asc(), Clock.id.asc())
        ).all()
    )


def _conflict_payload(clocks: list[Clock]) -> dict[str, list[dict[str, object]]]:
    return {
        "conflicting_clocks": [
            {
                "id": clock.id,
                "arrival_time": clock.arrival_time,
                "departure_time": clock.departure_time,
            }
            for clock in clocks
        ]
    }


def _duplicate_clock_in_error(
    window: WorkDayWindow,
    clocks: list[Clock],
    warnings: list[str],
) -> ConflictError:
    return ConflictError(
        (
            f"Already clocked in for the work day starting {window.anchor.isoformat()}; "
            "multiple clock-ins per work day are not allowed"
        ),
        code="DUPLICATE_CLOCK_IN",
        data=_conflict_payload(clocks),
        warnings=warnings,
    )


def _load_user_team_for_update(db: Session, user_team_id: int) -> UserTeam:
    user_team = db.scalar(
        select(UserTeam)
        .options(selectinload(UserTeam.team))
        .where(UserTeam.id == user_team_id)
        .with_for_update(of=UserTeam)
    )
    if user_team is None:
        raise NotFoundError("User-team association not found", code="USER_TEAM_NOT_FOUND")
    return user_team


def build_punch_context(
    db: Session,
    *,
    user_team_id: int,
    now_utc: datetime | None = None,
) -> PunchContext:
    user_team = _load_user_team_for_update(db, user_team_id)
    team = user_team.team
    if team is None:
        raise NotFoundError("Team not found", code="TEAM_NOT_FOUND")

    resolution = resolve_planning_id(user_team)
    if resolution.planning_id is None:
        raise NotFoundError("No planning assigned to this user-team", code="NO_PLANNING")

    local_now = zone_local_now(zone_for_team(team), now_utc or _utcnow())
    day = weekday_of(local_now)
    schedule = resolve_schedule_for_day(db, planning_id=resolution.planning_id, day=day)
    if schedule is None:
        raise NotFoundError(
            f"No schedule found for {day.value}; cannot clock in/out on days without scheduled work",
            code="NO_SCHEDULE",
        )

    window = compute_work_day_window(schedule, local_now)
    today_start = datetime.combine(local_now.date(), time.min)
    warnings = detect_anomalies(db, user_team_id=user_team.id, work_day_start=today_start)
    return PunchContext(
        user_team=user_team,
        team=team,
        resolution=resolution,
        planning_id=resolution.planning_id,
        day=day,
        schedule=schedule,
        local_now=local_now,
        window=window,
        warnings=warnings,
    )


def _clock_out(db: Session, context: PunchContext, open_clock: Clock) -> PunchResult:
    warnings = list(context.warnings)
    departure_warning = evaluate_departure(
        schedule=context.schedule,
        local_now=context.local_now,
    )
    if departure_warning:
        warnings.append(departure_warning)

    open_clock.departure_time = context.local_now
    commit_or_raise(db, message="Failed to clock out")
    db.refresh(open_clock)
    logger.info(
        "clock_out",
        extra={
            "user_team_id": context.user_team.id,
            "clock_id": open_clock.id,
            "departure_time": context.local_now,
            "warnings": warnings,
        },
    )
    return PunchResult(
        action=PunchAction.CLOCK_OUT,
        state=ClockState.CLOCKED_OUT,
        clock=open_clock,
        planning_id=context.planning_id,
        is_team_default=context.resolution.is_team_default,
        work_day=context.window.anchor,
        day=context.day,
        warnings=warnings,
    )


def _clock_in(db: Session, context: PunchContext) -> PunchResult:
    warnings = list(context.warnings)
    existing = _find_clocks_in_window(
        db,
        user_team_id=context.user_team.id,
        planning_id=context.planning_id,
        window=context.window,
    )
    if existing:
        logger.info(
            "clock_in_duplicate_rejected",
            extra={
                "user_team_id": context.user_team.id,
                "planning_id": context.planning_id,
                "work_day": context.window.anchor,
                "conflicting_clock_ids": [item.id for item in existing],
            },
        )
        raise _duplicate_clock_in_error(context.window, existing, warnings)

    is_late, arrival_warning = evaluate_arrival(
        schedule=context.schedule,
        local_now=context.local_now,
        lateness_limit=int(context.team.lateness_limit or 0),
    )
    if arrival_warning:
        warnings.append(arrival_warning)

    clock = Clock(
        user_team_id=context.user_team.id,
        planning_id=context.planning_id,
        arrival_time=context.local_now,
        departure_time=None,
        work_day=context.window.anchor,
    )
    db.add(clock)
    try:
        db.commit()
    except IntegrityError as exc:
        # A concurrent punch won the race on the per-work-day or open-clock guard.
        db.rollback()
        raise ConflictError(
            (
                f"Already clocked in for the work day starting {context.window.anchor.isoformat()}; "
                "multiple clock-ins per work day are not allowed"
            ),
            code="DUPLICATE_CLOCK_IN",
            error=str(exc.orig) if exc.orig is not None else str(exc),
            warnings=warnings,
        ) from exc
    db.refresh(clock)
    logger.info(
        "clock_in",
        extra={
            "user_team_id": context.user_team.id,
            "clock_id": clock.id,
            "planning_id": context.planning_id,
            "work_day": context.window.anchor,
            "is_late": is_late,
            "warnings": warnings,
        },
    )
    return PunchResult(
        action=PunchAction.CLOCK_IN,
        state=ClockState.CLOCKED_IN,
        clock=clock,
        planning_id=context.planning_id,
        is_team_default=context.resolution.is_team_default,
        work_day=context.window.anchor,
        day=context.day,
        warnings=warnings,
        is_late=is_late,
    )


def punch(
    db: Session,
    *,
    user_team_id: int,
    intent: PunchIntent = PunchIntent.AUTO,
    now_utc: datetime | None = None,
) -> PunchResult:
    context = build_punch_context(db, user_team_id=user_team_id, now_utc=now_utc)
    open_clock = find_open_clock(db, user_team_id=user_team_id)
    state = derive_state(open_clock)

    if intent == PunchIntent.IN and state == ClockState.CLOCKED_IN:
        if context.window.contains(open_clock.arrival_time):
            raise _duplicate_clock_in_error(context.window, [open_clock], context.warnings)
        raise ConflictError(
            "An open clock-in already exists; clock out before clocking in again",
            code="OPEN_CLOCK_EXISTS",
            data=_conflict_payload([open_clock]),
            warnings=context.warnings,
        )
    if intent == PunchIntent.OUT and state == ClockState.CLOCKED_OUT:
        raise ConflictError(
            "No open clock-in to close",
            code="CHECKIN_REQUIRED",
            warnings=context.warnings,
        )

    if state == ClockState.CLOCKED_IN:
        return _clock_out(db, context, open_clock)
    return _clock_in(db, context)


def get_clock_state(db: Session, *, user_team_id: int) -> tuple[ClockState, Clock | None]:
    if db.get(UserTeam, user_team_id) is None:
        raise NotFoundError("User-team association not found", code="USER_TEAM_NOT_FOUND")
    open_clock = find_open_clock(db, user_team_id=user_team_id)
    return derive_state(open_clock), open_clock
