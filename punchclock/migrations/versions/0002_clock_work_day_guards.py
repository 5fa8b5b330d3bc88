"""Add clock work_day and uniqueness guards against racing punches

Revision ID: 0002_clock_work_day_guards
Revises: 0001_initial
Create Date: 2026-10-12 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0002_clock_work_day_guards"
down_revision: Union[str, None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Punches before this hour on a night-shift day belong to the previous work day.
NIGHT_SHIFT_CUTOFF_HOUR = 12


def _assert_no_guard_violations(bind: sa.engine.Connection) -> None:
    duplicate_days = bind.execute(
        sa.text(
            "SELECT user_team_id, planning_id, work_day, COUNT(*) AS clock_count "
            "FROM clocks WHERE planning_id IS NOT NULL "
            "GROUP BY user_team_id, planning_id, work_day "
            "HAVING COUNT(*) > 1 ORDER BY user_team_id LIMIT 20"
        )
    ).fetchall()
    open_clocks = bind.execute(
        sa.text(
            "SELECT user_team_id, COUNT(*) AS open_count FROM clocks "
            "WHERE departure_time IS NULL GROUP BY user_team_id "
            "HAVING COUNT(*) > 1 ORDER BY user_team_id LIMIT 20"
        )
    ).fetchall()
    if not duplicate_days and not open_clocks:
        return

    lines = ["clocks rows violate the new uniqueness guards; resolve them and rerun the upgrade:"]
    for row in duplicate_days:
        lines.append(
            f"  user_team_id={row[0]} planning_id={row[1]} work_day={row[2]}: {row[3]} clock-ins"
        )
    for row in open_clocks:
        lines.append(f"  user_team_id={row[0]}: {row[1]} open clocks")
    raise RuntimeError("\n".join(lines))


def upgrade() -> None:
    op.add_column("clocks", sa.Column("work_day", sa.Date(), nullable=True))
    op.execute("UPDATE clocks SET work_day = CAST(arrival_time AS DATE) WHERE work_day IS NULL")
    op.execute(
        sa.text(
            "UPDATE clocks AS c SET work_day = c.work_day - 1 "
            "FROM schedules AS s "
            "WHERE s.planning_id = c.planning_id "
            "AND s.day = CAST(lower(to_char(c.arrival_time, 'FMDay')) AS schedule_weekday) "
            "AND EXTRACT(HOUR FROM s.time_out) < EXTRACT(HOUR FROM s.time_in) "
            "AND EXTRACT(HOUR FROM c.arrival_time) < :cutoff_hour"
        ).bindparams(cutoff_hour=NIGHT_SHIFT_CUTOFF_HOUR)
    )

    _assert_no_guard_violations(op.get_bind())

    op.create_unique_constraint(
        "uq_clocks_user_team_planning_work_day",
        "clocks",
        ["user_team_id", "planning_id", "work_day"],
    )
    op.create_index(
        "uq_clocks_open_per_user_team",
        "clocks",
        ["user_team_id"],
        unique=True,
        postgresql_where=sa.text("departure_time IS NULL"),
    )


def downgrade() -> None:
    op.drop_index("uq_clocks_open_per_user_team", table_name="clocks")
    op.drop_constraint("uq_clocks_user_team_planning_work_day", "clocks", type_="unique")
    op.drop_column("clocks", "work_day")
