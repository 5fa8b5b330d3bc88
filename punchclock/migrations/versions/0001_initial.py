"""Initial planning and clock schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-05 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

schedule_weekday = postgresql.ENUM(
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
    name="schedule_weekday",
    create_type=False,
)
team_role = postgresql.ENUM(
    "employee",
    "manager",
    name="team_role",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "USER",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    schedule_weekday.create(bind, checkfirst=True)
    team_role.create(bind, checkfirst=True)
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "plannings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    op.create_table(
        "schedules",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("planning_id", sa.Integer(), nullable=False),
        sa.Column("day", schedule_weekday, nullable=False),
        sa.Column("time_in", sa.Time(), nullable=False),
        sa.Column("time_out", sa.Time(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["planning_id"], ["plannings.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("planning_id", "day", name="uq_schedules_planning_day"),
    )
    op.create_index("ix_schedules_planning_id", "schedules", ["planning_id"], unique=False)

    op.create_table(
        "teams",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("lateness_limit", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("default_planning_id", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["default_planning_id"], ["plannings.id"], ondelete="RESTRICT"),
    )
    op.create_index("ix_teams_default_planning_id", "teams", ["default_planning_id"], unique=False)

    op.create_table(
        "user_teams",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("role", team_role, nullable=False),
        sa.Column("planning_id", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["planning_id"], ["plannings.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("user_id", "team_id", name="uq_user_teams_user_team"),
    )
    op.create_index("ix_user_teams_user_id", "user_teams", ["user_id"], unique=False)
    op.create_index("ix_user_teams_team_id", "user_teams", ["team_id"], unique=False)
    op.create_index("ix_user_teams_planning_id", "user_teams", ["planning_id"], unique=False)

    op.create_table(
        "clocks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_team_id", sa.Integer(), nullable=False),
        sa.Column("planning_id", sa.Integer(), nullable=True),
        sa.Column("arrival_time", sa.DateTime(timezone=False), nullable=False),
        sa.Column("departure_time", sa.DateTime(timezone=False), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["user_team_id"], ["user_teams.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["planning_id"], ["plannings.id"], ondelete="RESTRICT"),
    )
    op.create_index("ix_clocks_user_team_id", "clocks", ["user_team_id"], unique=False)
    op.create_index("ix_clocks_planning_id", "clocks", ["planning_id"], unique=False)
    op.create_index("ix_clocks_arrival_time", "clocks", ["arrival_time"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_clocks_arrival_time", table_name="clocks")
    op.drop_index("ix_clocks_planning_id", table_name="clocks")
    op.drop_index("ix_clocks_user_team_id", table_name="clocks")
    op.drop_table("clocks")

    op.drop_index("ix_user_teams_planning_id", table_name="user_teams")
    op.drop_index("ix_user_teams_team_id", table_name="user_teams")
    op.drop_index("ix_user_teams_user_id", table_name="user_teams")
    op.drop_table("user_teams")

    op.drop_index("ix_teams_default_planning_id", table_name="teams")
    op.drop_table("teams")

    op.drop_index("ix_schedules_planning_id", table_name="schedules")
    op.drop_table("schedules")

    op.drop_table("plannings")

    bind = op.get_bind()
    audit_actor_type.drop(bind, checkfirst=True)
    team_role.drop(bind, checkfirst=True)
    schedule_weekday.drop(bind, checkfirst=True)
