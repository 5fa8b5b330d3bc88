from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import delete, select
from sqlalchemy.orm import Session, selectinload

from punchclock.audit import audit_request
from punchclock.db import commit_or_raise, get_db
from punchclock.errors import NotFoundError, ValidationError
from punchclock.models import Planning, Schedule
from punchclock.schemas import (
    ApiResponse,
    PlanningCreateRequest,
    PlanningRead,
    PlanningUpdateRequest,
    ScheduleRead,
    ScheduleUpdateRequest,
)
from punchclock.services.planning_coordinator import (
    create_planning_with_schedules,
    delete_planning,
    load_planning,
    update_schedule,
)

router = APIRouter(tags=["plannings"])


def planning_read(planning: Planning, schedules: list[Schedule] | None = None) -> PlanningRead:
    rows = planning.schedules if schedules is None else schedules
    return PlanningRead(
        id=planning.id,
        is_default=planning.is_default,
        created_at=planning.created_at,
        schedules=[ScheduleRead.model_validate(row) for row in rows],
    )


def _get_schedule_or_404(db: Session, schedule_id: int) -> Schedule:
    schedule = db.get(Schedule, schedule_id)
    if schedule is None:
        raise NotFoundError("Schedule not found", code="SCHEDULE_NOT_FOUND")
    return schedule


@router.get("/api/plannings", response_model=ApiResponse)
def list_plannings(db: Session = Depends(get_db)) -> ApiResponse:
    plannings = list(
        db.scalars(
            select(Planning)
            .options(selectinload(Planning.schedules))
            .order_by(Planning.id.asc())
        ).all()
    )
    return ApiResponse(
        message="Plannings retrieved successfully",
        data=[planning_read(item) for item in plannings],
        count=len(plannings),
    )


@router.post(
    "/api/plannings",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_planning(
    payload: PlanningCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ApiResponse:
    # Create-only plannings may be filled in later through replacement.
    schedules = payload.schedules if payload.schedules is not None else []
    creation = create_planning_with_schedules(
        db,
        schedules=schedules,
        is_default=payload.is_default,
        allow_empty=True,
    )
    planning = planning_read(creation.planning, creation.schedules)
    audit_request(
        db,
        request,
        action="PLANNING_CREATED",
        entity_type="planning",
        entity_id=planning.id,
        details={"schedule_count": len(planning.schedules), "is_default": planning.is_default},
    )
    return ApiResponse(message="Planning created successfully", data=planning)


@router.get("/api/plannings/{planning_id}", response_model=ApiResponse)
def get_planning(planning_id: int, db: Session = Depends(get_db)) -> ApiResponse:
    planning = load_planning(db, planning_id)
    return ApiResponse(message="Planning retrieved successfully", data=planning_read(planning))


@router.patch("/api/plannings/{planning_id}", response_model=ApiResponse)
def update_planning(
    planning_id: int,
    payload: PlanningUpdateRequest,
    db: Session = Depends(get_db),
) -> ApiResponse:
    if payload.is_default is None:
        raise ValidationError("No fields provided for update", code="EMPTY_UPDATE")
    planning = load_planning(db, planning_id)
    planning.is_default = payload.is_default
    commit_or_raise(db, message="Failed to update planning")
    planning = load_planning(db, planning_id)
    return ApiResponse(message="Planning updated successfully", data=planning_read(planning))


@router.delete("/api/plannings/{planning_id}", response_model=ApiResponse)
def remove_planning(
    planning_id: int,
    request: Request,
    db: Session = Depends(get_db),
) -> ApiResponse:
    deleted = delete_planning(db, planning_id=planning_id)
    audit_request(
        db,
        request,
        action="PLANNING_DELETED",
        entity_type="planning",
        entity_id=planning_id,
        details={"schedule_count": len(deleted.schedules)},
    )
    return ApiResponse(message="Planning deleted successfully", data=deleted)


@router.get(
    "/api/plannings/{planning_id}/schedules",
    response_model=ApiResponse,
)
def list_planning_schedules(planning_id: int, db: Session = Depends(get_db)) -> ApiResponse:
    planning = load_planning(db, planning_id)
    schedules = [ScheduleRead.model_validate(row) for row in planning.schedules]
    return ApiResponse(
        message="Schedules retrieved successfully",
        data=schedules,
        count=len(schedules),
    )


@router.get("/api/schedules", response_model=ApiResponse)
def list_schedules(db: Session = Depends(get_db)) -> ApiResponse:
    rows = list(db.scalars(select(Schedule).order_by(Schedule.planning_id.asc(), Schedule.id.asc())).all())
    return ApiResponse(
        message="Schedules retrieved successfully",
        data=[ScheduleRead.model_validate(row) for row in rows],
        count=len(rows),
    )


@router.get("/api/schedules/{schedule_id}", response_model=ApiResponse)
def get_schedule(schedule_id: int, db: Session = Depends(get_db)) -> ApiResponse:
    schedule = _get_schedule_or_404(db, schedule_id)
    return ApiResponse(message="Schedule retrieved successfully", data=ScheduleRead.model_validate(schedule))


@router.patch("/api/schedules/{schedule_id}", response_model=ApiResponse)
def patch_schedule(
    schedule_id: int,
    payload: ScheduleUpdateRequest,
    db: Session = Depends(get_db),
) -> ApiResponse:
    schedule = update_schedule(
        db,
        schedule_id=schedule_id,
        day=payload.day,
        time_in=payload.time_in,
        time_out=payload.time_out,
    )
    return ApiResponse(message="Schedule updated successfully", data=ScheduleRead.model_validate(schedule))


@router.delete("/api/schedules/{schedule_id}", response_model=ApiResponse)
def remove_schedule(schedule_id: int, db: Session = Depends(get_db)) -> ApiResponse:
    schedule = _get_schedule_or_404(db, schedule_id)
    snapshot = ScheduleRead.model_validate(schedule)
    db.execute(delete(Schedule).where(Schedule.id == schedule_id))
    commit_or_raise(db, message="Failed to delete schedule")
    return ApiResponse(message="Schedule deleted successfully", data=snapshot)
