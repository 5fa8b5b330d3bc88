from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from punchclock.db import commit_or_raise
from punchclock.errors import ConflictError, NotFoundError, StoreError, ValidationError
from punchclock.models import Clock, Planning, Schedule, Team, UserTeam
from punchclock.schemas import PlanningRead
from punchclock.services.schedule_rules import (
    invalid_day_message,
    is_valid_time_string,
    normalize_day,
    parse_time_string,
    validate_schedule_entries,
)

logger = logging.getLogger("punchclock.planning")


@dataclass(slots=True)
class PlanningCreation:
    planning: Planning
    schedules: list[Schedule]


@dataclass(slots=True)
class PlanningReplacement:
    planning: Planning
    schedules: list[Schedule]
    previous_planning_id: int | None
    new_planning_id: int
    is_vacation_planning: bool | None = None


def load_planning(db: Session, planning_id: int) -> Planning:
    planning = db.scalar(
        select(Planning)
        .options(selectinload(Planning.schedules))
        .where(Planning.id == planning_id)
    )
    if planning is None:
        raise NotFoundError("Planning not found", code="PLANNING_NOT_FOUND")
    return planning


def _compensate_planning(db: Session, *, planning_id: int, reason: str) -> None:
    try:
        db.execute(delete(Schedule).where(Schedule.planning_id == planning_id))
        db.execute(delete(Planning).where(Planning.id == planning_id))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "planning_compensation_failed",
            extra={"planning_id": planning_id, "reason": reason},
        )
        return

    logger.warning(
        "planning_compensated",
        extra={"planning_id": planning_id, "reason": reason},
    )


def create_planning_with_schedules(
    db: Session,
    *,
    schedules: Any,
    is_default: bool = False,
    allow_empty: bool = True,
) -> PlanningCreation:
    """Create a planning and its schedules as one logical unit.

    The planning row and the schedule rows are committed separately. When the
    schedule insert fails the planning is deleted again before the error is
    raised, so callers never observe a planning with a partial schedule set.
    """
    entries = validate_schedule_entries(schedules, allow_empty=allow_empty)

    planning = Planning(is_default=bool(is_default))
    db.add(planning)
    commit_or_raise(db, message="Failed to create planning")
    db.refresh(planning)
    planning_id = planning.id

    created: list[Schedule] = []
    if entries:
        rows = [
            Schedule(
                planning_id=planning_id,
                day=entry.day,
                time_in=entry.time_in,
                time_out=entry.time_out,
            )
            for entry in entries
        ]
        db.add_all(rows)
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(
                "planning_schedules_insert_failed",
                extra={"planning_id": planning_id, "schedule_count": len(rows), "error": str(exc)},
            )
            _compensate_planning(db, planning_id=planning_id, reason="schedule_insert_failed")
            raise StoreError(
                "Failed to create schedules, planning creation rolled back",
                error=str(exc),
            ) from exc
        for row in rows:
            db.refresh(row)
        created = rows

    logger.info(
        "planning_created",
        extra={"planning_id": planning_id, "schedule_count": len(created), "is_default": bool(is_default)},
    )
    return PlanningCreation(planning=planning, schedules=created)


def replace_team_default_planning(
    db: Session,
    *,
    team_id: int,
    schedules: Any,
) -> PlanningReplacement:
    team = db.get(Team, team_id)
    if team is None:
        raise NotFoundError("Team not found", code="TEAM_NOT_FOUND")
    previous_planning_id = team.default_planning_id

    creation = create_planning_with_schedules(
        db,
        schedules=schedules,
        is_default=True,
        allow_empty=False,
    )
    new_planning_id = creation.planning.id

    team.default_planning_id = new_planning_id
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "team_default_planning_link_failed",
            extra={"team_id": team_id, "planning_id": new_planning_id, "error": str(exc)},
        )
        _compensate_planning(db, planning_id=new_planning_id, reason="team_link_failed")
        raise StoreError(
            "Failed to update team default planning, new planning rolled back",
            error=str(exc),
        ) from exc

    logger.info(
        "team_default_planning_replaced",
        extra={
            "team_id": team_id,
            "previous_planning_id": previous_planning_id,
            "new_planning_id": new_planning_id,
        },
    )
    return PlanningReplacement(
        planning=creation.planning,
        schedules=creation.schedules,
        previous_planning_id=previous_planning_id,
        new_planning_id=new_planning_id,
    )


def replace_user_team_planning(
    db: Session,
    *,
    user_team_id: int,
    schedules: Any,
) -> PlanningReplacement:
    user_team = db.get(UserTeam, user_team_id)
    if user_team is None:
        raise NotFoundError("User-team association not found", code="USER_TEAM_NOT_FOUND")
    previous_planning_id = user_team.planning_id

    creation = create_planning_with_schedules(
        db,
        schedules=schedules,
        is_default=False,
        allow_empty=True,
    )
    new_planning_id = creation.planning.id
    # An empty schedule set marks a vacation planning: no day has scheduled work.
    is_vacation_planning = len(creation.schedules) == 0

    user_team.planning_id = new_planning_id
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "user_team_planning_link_failed",
            extra={"user_team_id": user_team_id, "planning_id": new_planning_id, "error": str(exc)},
        )
        _compensate_planning(db, planning_id=new_planning_id, reason="user_team_link_failed")
        raise StoreError(
            "Failed to update user-team planning, new planning rolled back",
            error=str(exc),
        ) from exc

    logger.info(
        "user_team_planning_replaced",
        extra={
            "user_team_id": user_team_id,
            "previous_planning_id": previous_planning_id,
            "new_planning_id": new_planning_id,
            "is_vacation_planning": is_vacation_planning,
        },
    )
    return PlanningReplacement(
        planning=creation.planning,
        schedules=creation.schedules,
        previous_planning_id=previous_planning_id,
        new_planning_id=new_planning_id,
        is_vacation_planning=is_vacation_planning,
    )


def delete_planning(db: Session, *, planning_id: int) -> PlanningRead:
    planning = load_planning(db, planning_id)

    referencing_teams = list(
        db.execute(
            select(Team.id, Team.name)
            .where(Team.default_planning_id == planning_id)
            .order_by(Team.id.asc())
        ).all()
    )
    if referencing_teams:
        raise ConflictError(
            "Cannot delete planning: it is referenced by teams",
            code="PLANNING_REFERENCED_BY_TEAMS",
            data={"referencing_teams": [{"id": row.id, "name": row.name} for row in referencing_teams]},
        )

    referencing_clock_id = db.scalar(select(Clock.id).where(Clock.planning_id == planning_id).limit(1))
    if referencing_clock_id is not None:
        raise ConflictError(
            "Cannot delete planning: it is referenced by clock entries",
            code="PLANNING_REFERENCED_BY_CLOCKS",
        )

    snapshot = PlanningRead.model_validate(planning)
    db.execute(
        update(UserTeam)
        .where(UserTeam.planning_id == planning_id)
        .values(planning_id=None)
    )
    db.execute(delete(Schedule).where(Schedule.planning_id == planning_id))
    db.execute(delete(Planning).where(Planning.id == planning_id))
    commit_or_raise(db, message="Failed to delete planning")
    logger.info("planning_deleted", extra={"planning_id": planning_id})
    return snapshot


def update_schedule(
    db: Session,
    *,
    schedule_id: int,
    day: str | None = None,
    time_in: str | None = None,
    time_out: str | None = None,
) -> Schedule:
    if not day and not time_in and not time_out:
        raise ValidationError("At least one field must be provided to update", code="EMPTY_UPDATE")

    normalized_day = None
    if day:
        normalized_day = normalize_day(day)
        if normalized_day is None:
            raise ValidationError(invalid_day_message(day), code="INVALID_DAY")
    if time_in and not is_valid_time_string(time_in):
        raise ValidationError("time_in format must be HH:MM:SS", code="INVALID_TIME_FORMAT")
    if time_out and not is_valid_time_string(time_out):
        raise ValidationError("time_out format must be HH:MM:SS", code="INVALID_TIME_FORMAT")

    schedule = db.get(Schedule, schedule_id)
    if schedule is None:
        raise NotFoundError("Schedule not found", code="SCHEDULE_NOT_FOUND")

    if normalized_day is not None:
        duplicate_id = db.scalar(
            select(Schedule.id).where(
                Schedule.planning_id == schedule.planning_id,
                Schedule.day == normalized_day,
                Schedule.id != schedule_id,
            )
        )
        if duplicate_id is not None:
            raise ConflictError(
                "A schedule for this day already exists in the planning",
                code="DUPLICATE_DAY",
            )
        schedule.day = normalized_day
    if time_in:
        schedule.time_in = parse_time_string(time_in)
    if time_out:
        schedule.time_out = parse_time_string(time_out)

    commit_or_raise(db, message="Failed to update schedule")
    db.refresh(schedule)
    return schedule
