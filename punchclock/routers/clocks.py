from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from punchclock.audit import audit_request
from punchclock.db import commit_or_raise, get_db
from punchclock.errors import NotFoundError, ValidationError
from punchclock.models import Clock
from punchclock.schemas import (
    ApiResponse,
    ClockRead,
    ClockStateRead,
    ClockUpdateRequest,
    PunchRead,
)
from punchclock.services.clock_engine import (
    PunchAction,
    PunchIntent,
    PunchResult,
    get_clock_state,
    punch,
    work_day_for_arrival,
)

router = APIRouter(tags=["clocks"])


def _get_clock_or_404(db: Session, clock_id: int) -> Clock:
    clock = db.get(Clock, clock_id)
    if clock is None:
        raise NotFoundError("Clock not found", code="CLOCK_NOT_FOUND")
    return clock


def _punch_response(request: Request, response: Response, db: Session, result: PunchResult) -> ApiResponse:
    clock = ClockRead.model_validate(result.clock)
    clocked_in = result.action == PunchAction.CLOCK_IN
    audit_request(
        db,
        request,
        action="CLOCK_IN" if clocked_in else "CLOCK_OUT",
        entity_type="clock",
        entity_id=clock.id,
        details={
            "user_team_id": clock.user_team_id,
            "planning_id": result.planning_id,
            "work_day": result.work_day.isoformat(),
            "warnings": list(result.warnings),
        },
    )
    response.status_code = status.HTTP_201_CREATED if clocked_in else status.HTTP_200_OK
    return ApiResponse(
        message="Clocked in successfully" if clocked_in else "Clocked out successfully",
        data=PunchRead(
            action=result.action.value,
            state=result.state.value,
            clock=clock,
            planning_id=result.planning_id,
            is_team_default=result.is_team_default,
            work_day=result.work_day,
            day=result.day,
        ),
        warnings=result.warnings or None,
        is_late=result.is_late,
    )


def _run_punch(
    request: Request,
    response: Response,
    db: Session,
    user_team_id: int,
    intent: PunchIntent,
) -> ApiResponse:
    request.state.user_team_id = user_team_id
    result = punch(db, user_team_id=user_team_id, intent=intent)
    request.state.clock_id = result.clock.id
    return _punch_response(request, response, db, result)


@router.post("/api/user-teams/{user_team_id}/punch", response_model=ApiResponse)
def punch_clock(
    user_team_id: int,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> ApiResponse:
    return _run_punch(request, response, db, user_team_id, PunchIntent.AUTO)


@router.post("/api/user-teams/{user_team_id}/clock-in", response_model=ApiResponse)
def clock_in(
    user_team_id: int,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> ApiResponse:
    return _run_punch(request, response, db, user_team_id, PunchIntent.IN)


@router.post("/api/user-teams/{user_team_id}/clock-out", response_model=ApiResponse)
def clock_out(
    user_team_id: int,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> ApiResponse:
    return _run_punch(request, response, db, user_team_id, PunchIntent.OUT)


@router.get(
    "/api/user-teams/{user_team_id}/clock-state",
    response_model=ApiResponse,
)
def read_clock_state(user_team_id: int, db: Session = Depends(get_db)) -> ApiResponse:
    state, open_clock = get_clock_state(db, user_team_id=user_team_id)
    return ApiResponse(
        message="Clock state retrieved successfully",
        data=ClockStateRead(
            user_team_id=user_team_id,
            state=state.value,
            open_clock=ClockRead.model_validate(open_clock) if open_clock is not None else None,
        ),
    )


@router.get("/api/clocks", response_model=ApiResponse)
def list_clocks(
    user_team_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse:
    stmt = select(Clock).order_by(Clock.arrival_time.desc(), Clock.id.desc())
    if user_team_id is not None:
        stmt = stmt.where(Clock.user_team_id == user_team_id)
    rows = list(db.scalars(stmt).all())
    return ApiResponse(
        message="Clocks retrieved successfully",
        data=[ClockRead.model_validate(row) for row in rows],
        count=len(rows),
    )


@router.get("/api/clocks/{clock_id}", response_model=ApiResponse)
def get_clock(clock_id: int, db: Session = Depends(get_db)) -> ApiResponse:
    clock = _get_clock_or_404(db, clock_id)
    return ApiResponse(message="Clock retrieved successfully", data=ClockRead.model_validate(clock))


@router.patch("/api/clocks/{clock_id}", response_model=ApiResponse)
def update_clock(
    clock_id: int,
    payload: ClockUpdateRequest,
    db: Session = Depends(get_db),
) -> ApiResponse:
    fields = payload.model_fields_set
    if not fields:
        raise ValidationError("No fields provided for update", code="EMPTY_UPDATE")

    clock = _get_clock_or_404(db, clock_id)
    if "arrival_time" in fields:
        if payload.arrival_time is None:
            raise ValidationError("arrival_time must not be null", code="INVALID_ARRIVAL_TIME")
        clock.arrival_time = payload.arrival_time.replace(tzinfo=None, microsecond=0)
        clock.work_day = work_day_for_arrival(
            db,
            planning_id=clock.planning_id,
            arrival_time=clock.arrival_time,
        )
    if "departure_time" in fields:
        clock.departure_time = (
            payload.departure_time.replace(tzinfo=None, microsecond=0)
            if payload.departure_time is not None
            else None
        )
    if clock.departure_time is not None and clock.departure_time < clock.arrival_time:
        raise ValidationError("departure_time must not be before arrival_time", code="INVALID_CLOCK_RANGE")

    commit_or_raise(db, message="Failed to update clock")
    db.refresh(clock)
    return ApiResponse(message="Clock updated successfully", data=ClockRead.model_validate(clock))


@router.delete("/api/clocks/{clock_id}", response_model=ApiResponse)
def remove_clock(clock_id: int, db: Session = Depends(get_db)) -> ApiResponse:
    clock = _get_clock_or_404(db, clock_id)
    snapshot = ClockRead.model_validate(clock)
    db.execute(delete(Clock).where(Clock.id == clock_id))
    commit_or_raise(db, message="Failed to delete clock")
    return ApiResponse(message="Clock deleted successfully", data=snapshot)
