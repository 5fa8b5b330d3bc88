#!/usr/bin/env python
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine

from punchclock.settings import get_settings


EXPECTED_HEAD = "0002_clock_work_day_guards"
REQUIRED_TABLES = ("plannings", "schedules", "teams", "user_teams", "clocks", "audit_logs")


def run(engine: Engine | None = None) -> dict[str, Any]:
    database_url = get_settings().database_url
    if engine is None:
        engine = create_engine(database_url)
    report: dict[str, Any] = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "database": engine.url.render_as_string(hide_password=True),
        "checks": [],
    }

    def add(name: str, status: str, details: dict[str, Any]) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    tables = set(inspect(engine).get_table_names())
    with engine.connect() as conn:
        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})

        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        missing_tables = [table for table in REQUIRED_TABLES if table not in tables]
        add("missing_tables", "fail" if missing_tables else "ok", {"tables": missing_tables})
        if missing_tables:
            return report

        # Left behind when a replacement crashed between the planning insert and the pointer update.
        unreferenced_plannings = conn.execute(
            text(
                """
                select p.id
                from plannings p
                where not exists (select 1 from teams t where t.default_planning_id = p.id)
                  and not exists (select 1 from user_teams ut where ut.planning_id = p.id)
                  and not exists (select 1 from clocks c where c.planning_id = p.id)
                order by p.id
                limit 50
                """
            )
        ).fetchall()
        add(
            "unreferenced_plannings",
            "warn" if unreferenced_plannings else "ok",
            {"sample_ids": [row[0] for row in unreferenced_plannings]},
        )

        multiple_open_clocks = conn.execute(
            text(
                """
                select user_team_id, count(*)
                from clocks
                where departure_time is null
                group by user_team_id
                having count(*) > 1
                """
            )
        ).fetchall()
        add(
            "multiple_open_clocks",
            "fail" if multiple_open_clocks else "ok",
            {"rows": [list(row) for row in multiple_open_clocks]},
        )

        duplicate_work_day_clock_ins = conn.execute(
            text(
                """
                select user_team_id, planning_id, work_day, count(*)
                from clocks
                where work_day is not null
                group by user_team_id, planning_id, work_day
                having count(*) > 1
                """
            )
        ).fetchall()
        add(
            "duplicate_work_day_clock_ins",
            "fail" if duplicate_work_day_clock_ins else "ok",
            {"rows": [[str(item) for item in row] for row in duplicate_work_day_clock_ins]},
        )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
