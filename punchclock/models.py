from __future__ import annotations

import enum
from datetime import date, datetime, time
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from punchclock.db import Base


class Weekday(str, enum.Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


WEEKDAY_ORDER: tuple[Weekday, ...] = tuple(Weekday)


class TeamRole(str, enum.Enum):
    EMPLOYEE = "employee"
    MANAGER = "manager"


class AuditActorType(str, enum.Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


_JSON_DETAILS = JSON().with_variant(JSONB(), "postgresql")


class Planning(Base):
    __tablename__ = "plannings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    schedules: Mapped[list[Schedule]] = relationship(
        back_populates="planning",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Schedule.id",
    )


class Schedule(Base):
    __tablename__ = "schedules"
    __table_args__ = (
        UniqueConstraint("planning_id", "day", name="uq_schedules_planning_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    planning_id: Mapped[int] = mapped_column(
        ForeignKey("plannings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    day: Mapped[Weekday] = mapped_column(
        Enum(Weekday, name="schedule_weekday", values_callable=_enum_values),
        nullable=False,
    )
    time_in: Mapped[time] = mapped_column(Time, nullable=False)
    time_out: Mapped[time] = mapped_column(Time, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    planning: Mapped[Planning] = relationship(back_populates="schedules")


class Team(Base):
    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    lateness_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)
    default_planning_id: Mapped[int | None] = mapped_column(
        ForeignKey("plannings.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    default_planning: Mapped[Planning | None] = relationship()
    memberships: Mapped[list[UserTeam]] = relationship(back_populates="team")


class UserTeam(Base):
    __tablename__ = "user_teams"
    __table_args__ = (
        UniqueConstraint("user_id", "team_id", name="uq_user_teams_user_team"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    team_id: Mapped[int] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[TeamRole] = mapped_column(
        Enum(TeamRole, name="team_role", values_callable=_enum_values),
        nullable=False,
        default=TeamRole.EMPLOYEE,
    )
    planning_id: Mapped[int | None] = mapped_column(
        ForeignKey("plannings.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    team: Mapped[Team] = relationship(back_populates="memberships")
    planning: Mapped[Planning | None] = relationship()
    clocks: Mapped[list[Clock]] = relationship(back_populates="user_team")


class Clock(Base):
    __tablename__ = "clocks"
    __table_args__ = (
        UniqueConstraint(
            "user_team_id",
            "planning_id",
            "work_day",
            name="uq_clocks_user_team_planning_work_day",
        ),
        Index(
            "uq_clocks_open_per_user_team",
            "user_team_id",
            unique=True,
            postgresql_where=text("departure_time IS NULL"),
            sqlite_where=text("departure_time IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_team_id: Mapped[int] = mapped_column(
        ForeignKey("user_teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    planning_id: Mapped[int | None] = mapped_column(
        ForeignKey("plannings.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    # Zone-local wall time of the team, stored without offset.
    arrival_time: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, index=True)
    departure_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    work_day: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    user_team: Mapped[UserTeam] = relationship(back_populates="clocks")
    planning: Mapped[Planning | None] = relationship()


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(
        _JSON_DETAILS,
        nullable=False,
        default=dict,
    )
