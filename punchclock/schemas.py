from datetime import date, datetime, time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_serializer

from punchclock.models import TeamRole, Weekday


class ApiResponse(BaseModel):
    success: bool = True
    message: str
    data: Any = None
    count: int | None = None
    warnings: list[str] | None = None
    is_late: bool | None = Field(default=None, alias="isLate")

    model_config = ConfigDict(populate_by_name=True)

    @model_serializer(mode="wrap")
    def _drop_empty_optional_fields(self, handler: Any) -> dict[str, Any]:
        payload = handler(self)
        for key in ("data", "count", "warnings", "is_late", "isLate"):
            if key in payload and payload[key] is None:
                del payload[key]
        return payload


class PlanningCreateRequest(BaseModel):
    is_default: bool = False
    # Validated by schedule_rules so that messages stay stable for clients.
    schedules: Any = None


class PlanningUpdateRequest(BaseModel):
    is_default: bool | None = None


class PlanningReplaceRequest(BaseModel):
    schedules: Any = None


class ScheduleUpdateRequest(BaseModel):
    day: str | None = None
    time_in: str | None = None
    time_out: str | None = None


class ScheduleRead(BaseModel):
    id: int
    planning_id: int
    day: Weekday
    time_in: time
    time_out: time
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class PlanningRead(BaseModel):
    id: int
    is_default: bool
    created_at: datetime | None = None
    schedules: list[ScheduleRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class PlanningReplacementRead(BaseModel):
    planning: PlanningRead
    previous_planning_id: int | None
    new_planning_id: int
    is_vacation_planning: bool | None = None


class TeamCreateRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    lateness_limit: int | None = None
    timezone: str | None = None


class TeamUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    lateness_limit: int | None = None
    timezone: str | None = None
    default_planning_id: int | None = None


class TeamRead(BaseModel):
    id: int
    name: str
    description: str | None
    lateness_limit: int
    timezone: str
    default_planning_id: int | None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class UserTeamCreateRequest(BaseModel):
    user_id: int | None = Field(default=None, ge=1)
    team_id: int | None = Field(default=None, ge=1)
    role: str | None = None


class UserTeamUpdateRequest(BaseModel):
    role: str | None = None
    planning_id: int | None = None


class UserTeamRead(BaseModel):
    id: int
    user_id: int
    team_id: int
    role: TeamRole
    planning_id: int | None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class EffectivePlanningRead(BaseModel):
    user_team_id: int
    planning_id: int | None
    is_team_default: bool
    planning: PlanningRead | None = None


class ClockUpdateRequest(BaseModel):
    arrival_time: datetime | None = None
    departure_time: datetime | None = None


class ClockRead(BaseModel):
    id: int
    user_team_id: int
    planning_id: int | None
    arrival_time: datetime
    departure_time: datetime | None
    work_day: date | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ClockStateRead(BaseModel):
    user_team_id: int
    state: Literal["CLOCKED_IN", "CLOCKED_OUT"]
    open_clock: ClockRead | None = None


class PunchRead(BaseModel):
    action: Literal["clock_in", "clock_out"]
    state: Literal["CLOCKED_IN", "CLOCKED_OUT"]
    clock: ClockRead
    planning_id: int
    is_team_default: bool
    work_day: date
    day: Weekday
