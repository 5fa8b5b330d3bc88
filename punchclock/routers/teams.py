from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import delete, select
from sqlalchemy.orm import Session, selectinload

from punchclock.audit import audit_request
from punchclock.db import commit_or_raise, get_db
from punchclock.errors import ConflictError, NotFoundError, ValidationError
from punchclock.models import Clock, Planning, Team, TeamRole, UserTeam
from punchclock.routers.plannings import planning_read
from punchclock.schemas import (
    ApiResponse,
    EffectivePlanningRead,
    PlanningReplaceRequest,
    PlanningReplacementRead,
    ScheduleRead,
    TeamCreateRequest,
    TeamRead,
    TeamUpdateRequest,
    UserTeamCreateRequest,
    UserTeamRead,
    UserTeamUpdateRequest,
)
from punchclock.services.planning_coordinator import (
    PlanningReplacement,
    replace_team_default_planning,
    replace_user_team_planning,
)
from punchclock.services.time_resolver import (
    current_weekday,
    resolve_planning_id,
    resolve_schedule_for_day,
)
from punchclock.settings import get_allowed_timezones, get_settings, is_allowed_timezone

router = APIRouter(tags=["teams"])

VALID_ROLES: tuple[str, ...] = tuple(item.value for item in TeamRole)


def _get_team_or_404(db: Session, team_id: int) -> Team:
    team = db.get(Team, team_id)
    if team is None:
        raise NotFoundError("Team not found", code="TEAM_NOT_FOUND")
    return team


def _get_user_team_or_404(db: Session, user_team_id: int) -> UserTeam:
    user_team = db.scalar(
        select(UserTeam)
        .options(selectinload(UserTeam.team))
        .where(UserTeam.id == user_team_id)
    )
    if user_team is None:
        raise NotFoundError("User-team association not found", code="USER_TEAM_NOT_FOUND")
    return user_team


def _ensure_planning_exists(db: Session, planning_id: int) -> None:
    if db.get(Planning, planning_id) is None:
        raise NotFoundError("Planning not found", code="PLANNING_NOT_FOUND")


def _validate_lateness_limit(value: int | None) -> int:
    if value is None or value < 0:
        raise ValidationError("lateness_limit must not be null or negative", code="INVALID_LATENESS_LIMIT")
    return value


def _validate_timezone(value: str) -> str:
    normalized = value.strip()
    if not is_allowed_timezone(normalized):
        raise ValidationError(
            f"Invalid timezone: {value}. Must be one of: {', '.join(get_allowed_timezones())}",
            code="INVALID_TIMEZONE",
        )
    return normalized


def _parse_role(value: str | None) -> TeamRole:
    normalized = (value or "").strip().lower()
    if normalized not in VALID_ROLES:
        raise ValidationError(
            f"Invalid role. Must be one of: {', '.join(VALID_ROLES)}",
            code="INVALID_ROLE",
        )
    return TeamRole(normalized)


def _replacement_read(replacement: PlanningReplacement) -> PlanningReplacementRead:
    return PlanningReplacementRead(
        planning=planning_read(replacement.planning, replacement.schedules),
        previous_planning_id=replacement.previous_planning_id,
        new_planning_id=replacement.new_planning_id,
        is_vacation_planning=replacement.is_vacation_planning,
    )


@router.post(
    "/api/teams",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_team(payload: TeamCreateRequest, db: Session = Depends(get_db)) -> ApiResponse:
    name = (payload.name or "").strip()
    if not name:
        raise ValidationError("Name is required", code="NAME_REQUIRED")
    lateness_limit = _validate_lateness_limit(payload.lateness_limit)
    timezone_name = _validate_timezone(payload.timezone or get_settings().default_timezone)

    team = Team(
        name=name,
        description=payload.description,
        lateness_limit=lateness_limit,
        timezone=timezone_name,
    )
    db.add(team)
    commit_or_raise(db, message="Failed to create team")
    db.refresh(team)
    return ApiResponse(message="Team created successfully", data=TeamRead.model_validate(team))


@router.get("/api/teams", response_model=ApiResponse)
def list_teams(db: Session = Depends(get_db)) -> ApiResponse:
    teams = list(db.scalars(select(Team).order_by(Team.id.asc())).all())
    return ApiResponse(
        message="Teams retrieved successfully",
        data=[TeamRead.model_validate(item) for item in teams],
        count=len(teams),
    )


@router.get("/api/teams/{team_id}", response_model=ApiResponse)
def get_team(team_id: int, db: Session = Depends(get_db)) -> ApiResponse:
    team = _get_team_or_404(db, team_id)
    return ApiResponse(message="Team retrieved successfully", data=TeamRead.model_validate(team))


@router.patch("/api/teams/{team_id}", response_model=ApiResponse)
def update_team(team_id: int, payload: TeamUpdateRequest, db: Session = Depends(get_db)) -> ApiResponse:
    fields = payload.model_fields_set
    if not fields:
        raise ValidationError("No fields provided for update", code="EMPTY_UPDATE")

    team = _get_team_or_404(db, team_id)
    if "name" in fields:
        name = (payload.name or "").strip()
        if not name:
            raise ValidationError("Name is required", code="NAME_REQUIRED")
        team.name = name
    if "description" in fields:
        team.description = payload.description
    if "lateness_limit" in fields:
        team.lateness_limit = _validate_lateness_limit(payload.lateness_limit)
    if "timezone" in fields:
        team.timezone = _validate_timezone(payload.timezone or "")
    if "default_planning_id" in fields:
        if payload.default_planning_id is not None:
            _ensure_planning_exists(db, payload.default_planning_id)
        team.default_planning_id = payload.default_planning_id

    commit_or_raise(db, message="Failed to update team")
    db.refresh(team)
    return ApiResponse(message="Team updated successfully", data=TeamRead.model_validate(team))


@router.delete("/api/teams/{team_id}", response_model=ApiResponse)
def delete_team(team_id: int, db: Session = Depends(get_db)) -> ApiResponse:
    team = _get_team_or_404(db, team_id)
    snapshot = TeamRead.model_validate(team)
    membership_ids = select(UserTeam.id).where(UserTeam.team_id == team_id)
    # Clocks and memberships are removed explicitly; SQLite does not enforce ON DELETE.
    db.execute(delete(Clock).where(Clock.user_team_id.in_(membership_ids)))
    db.execute(delete(UserTeam).where(UserTeam.team_id == team_id))
    db.execute(delete(Team).where(Team.id == team_id))
    commit_or_raise(db, message="Failed to delete team")
    return ApiResponse(message="Team deleted successfully", data=snapshot)


@router.get("/api/teams/{team_id}/user-teams", response_model=ApiResponse)
def list_team_members(team_id: int, db: Session = Depends(get_db)) -> ApiResponse:
    _get_team_or_404(db, team_id)
    rows = list(
        db.scalars(
            select(UserTeam)
            .where(UserTeam.team_id == team_id)
            .order_by(UserTeam.id.asc())
        ).all()
    )
    return ApiResponse(
        message="Team users retrieved successfully",
        data=[UserTeamRead.model_validate(row) for row in rows],
        count=len(rows),
    )


@router.put(
    "/api/teams/{team_id}/default-planning",
    response_model=ApiResponse,
)
def replace_default_planning(
    team_id: int,
    payload: PlanningReplaceRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ApiResponse:
    replacement = replace_team_default_planning(db, team_id=team_id, schedules=payload.schedules)
    data = _replacement_read(replacement)
    audit_request(
        db,
        request,
        action="TEAM_DEFAULT_PLANNING_REPLACED",
        entity_type="team",
        entity_id=team_id,
        details={
            "previous_planning_id": data.previous_planning_id,
            "new_planning_id": data.new_planning_id,
        },
    )
    return ApiResponse(message="Team planning updated successfully", data=data)


@router.post(
    "/api/user-teams",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_user_team(payload: UserTeamCreateRequest, db: Session = Depends(get_db)) -> ApiResponse:
    if payload.user_id is None or payload.team_id is None or not payload.role:
        raise ValidationError("user_id, team_id and role are required", code="MISSING_FIELDS")
    role = _parse_role(payload.role)
    _get_team_or_404(db, payload.team_id)

    existing_id = db.scalar(
        select(UserTeam.id).where(
            UserTeam.user_id == payload.user_id,
            UserTeam.team_id == payload.team_id,
        )
    )
    if existing_id is not None:
        raise ConflictError("User is already associated with this team", code="USER_TEAM_EXISTS")

    user_team = UserTeam(user_id=payload.user_id, team_id=payload.team_id, role=role)
    db.add(user_team)
    commit_or_raise(db, message="Failed to create user-team association")
    db.refresh(user_team)
    return ApiResponse(
        message="User-team association created successfully",
        data=UserTeamRead.model_validate(user_team),
    )


@router.get("/api/user-teams", response_model=ApiResponse)
def list_user_teams(
    user_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse:
    stmt = select(UserTeam).order_by(UserTeam.id.asc())
    if user_id is not None:
        stmt = stmt.where(UserTeam.user_id == user_id)
    rows = list(db.scalars(stmt).all())
    return ApiResponse(
        message="User-teams retrieved successfully",
        data=[UserTeamRead.model_validate(row) for row in rows],
        count=len(rows),
    )


@router.get("/api/user-teams/{user_team_id}", response_model=ApiResponse)
def get_user_team(user_team_id: int, db: Session = Depends(get_db)) -> ApiResponse:
    user_team = _get_user_team_or_404(db, user_team_id)
    return ApiResponse(
        message="User-team association retrieved successfully",
        data=UserTeamRead.model_validate(user_team),
    )


@router.patch("/api/user-teams/{user_team_id}", response_model=ApiResponse)
def update_user_team(
    user_team_id: int,
    payload: UserTeamUpdateRequest,
    db: Session = Depends(get_db),
) -> ApiResponse:
    fields = payload.model_fields_set
    if not fields:
        raise ValidationError("No fields provided for update", code="EMPTY_UPDATE")

    user_team = _get_user_team_or_404(db, user_team_id)
    if "role" in fields:
        user_team.role = _parse_role(payload.role)
    if "planning_id" in fields:
        if payload.planning_id is not None:
            _ensure_planning_exists(db, payload.planning_id)
        user_team.planning_id = payload.planning_id

    commit_or_raise(db, message="Failed to update user-team association")
    db.refresh(user_team)
    return ApiResponse(
        message="User-team association updated successfully",
        data=UserTeamRead.model_validate(user_team),
    )


@router.delete("/api/user-teams/{user_team_id}", response_model=ApiResponse)
def delete_user_team(user_team_id: int, db: Session = Depends(get_db)) -> ApiResponse:
    user_team = _get_user_team_or_404(db, user_team_id)
    snapshot = UserTeamRead.model_validate(user_team)
    db.execute(delete(Clock).where(Clock.user_team_id == user_team_id))
    db.execute(delete(UserTeam).where(UserTeam.id == user_team_id))
    commit_or_raise(db, message="Failed to delete user-team association")
    return ApiResponse(message="User-team association deleted successfully", data=snapshot)


@router.get(
    "/api/user-teams/{user_team_id}/effective-planning",
    response_model=ApiResponse,
)
def get_effective_planning(user_team_id: int, db: Session = Depends(get_db)) -> ApiResponse:
    user_team = _get_user_team_or_404(db, user_team_id)
    resolution = resolve_planning_id(user_team)
    if resolution.planning_id is None:
        raise NotFoundError("No planning assigned to this user-team", code="NO_PLANNING")

    planning = db.scalar(
        select(Planning)
        .options(selectinload(Planning.schedules))
        .where(Planning.id == resolution.planning_id)
    )
    data = EffectivePlanningRead(
        user_team_id=user_team.id,
        planning_id=resolution.planning_id,
        is_team_default=resolution.is_team_default,
        planning=planning_read(planning) if planning is not None else None,
    )
    message = "Default planning retrieved successfully" if resolution.is_team_default else "Planning retrieved successfully"
    return ApiResponse(message=message, data=data)


@router.get(
    "/api/user-teams/{user_team_id}/current-schedule",
    response_model=ApiResponse,
)
def get_current_schedule(user_team_id: int, db: Session = Depends(get_db)) -> ApiResponse:
    user_team = _get_user_team_or_404(db, user_team_id)
    resolution = resolve_planning_id(user_team)
    if resolution.planning_id is None:
        raise NotFoundError("No planning assigned to this user-team", code="NO_PLANNING")

    day = current_weekday(user_team.team.timezone)
    schedule = resolve_schedule_for_day(db, planning_id=resolution.planning_id, day=day)
    if schedule is None:
        raise NotFoundError(f"No schedule found for {day.value}", code="NO_SCHEDULE")

    prefix = "Current default schedule" if resolution.is_team_default else "Current schedule"
    return ApiResponse(
        message=f"{prefix} for {day.value} retrieved successfully",
        data=ScheduleRead.model_validate(schedule),
    )


@router.put(
    "/api/user-teams/{user_team_id}/planning",
    response_model=ApiResponse,
)
def replace_planning_override(
    user_team_id: int,
    payload: PlanningReplaceRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ApiResponse:
    replacement = replace_user_team_planning(db, user_team_id=user_team_id, schedules=payload.schedules)
    data = _replacement_read(replacement)
    audit_request(
        db,
        request,
        action="USER_TEAM_PLANNING_REPLACED",
        entity_type="user_team",
        entity_id=user_team_id,
        details={
            "previous_planning_id": data.previous_planning_id,
            "new_planning_id": data.new_planning_id,
            "is_vacation_planning": data.is_vacation_planning,
        },
    )
    return ApiResponse(message="User-team planning updated successfully", data=data)
