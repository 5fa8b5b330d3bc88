from __future__ import annotations

import unittest
from datetime import datetime, time
from unittest.mock import patch

from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from punchclock.db import Base
from punchclock.errors import ConflictError, NotFoundError, StoreError, ValidationError
from punchclock.models import Clock, Planning, Schedule, Team, TeamRole, UserTeam, Weekday
from punchclock.services.planning_coordinator import (
    create_planning_with_schedules,
    delete_planning,
    replace_team_default_planning,
    replace_user_team_planning,
    update_schedule,
)

WEEKDAY_SCHEDULES = [
    {"day": "monday", "time_in": "09:00:00", "time_out": "17:00:00"},
    {"day": "tuesday", "time_in": "09:00:00", "time_out": "17:00:00"},
]


def _sqlite_session() -> Session:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, future=True)()


def _commit_failing_on(db: Session, *failing_calls: int, message: str = "Schedules insert error"):  # type: ignore[no-untyped-def]
    real_commit = db.commit
    calls = {"count": 0}

    def _commit() -> None:
        calls["count"] += 1
        if calls["count"] in failing_calls:
            raise SQLAlchemyError(message)
        real_commit()

    return patch.object(db, "commit", side_effect=_commit)


def _count(db: Session, model) -> int:  # type: ignore[no-untyped-def]
    return int(db.scalar(select(func.count()).select_from(model)) or 0)


class PlanningCreationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _sqlite_session()

    def tearDown(self) -> None:
        self.db.close()

    def test_creates_planning_with_schedules(self) -> None:
        creation = create_planning_with_schedules(self.db, schedules=WEEKDAY_SCHEDULES, is_default=True)

        self.assertIsNotNone(creation.planning.id)
        self.assertTrue(creation.planning.is_default)
        self.assertEqual([item.day for item in creation.schedules], [Weekday.MONDAY, Weekday.TUESDAY])
        self.assertEqual(_count(self.db, Schedule), 2)

    def test_empty_schedule_list_creates_bare_planning(self) -> None:
        creation = create_planning_with_schedules(self.db, schedules=[], allow_empty=True)

        self.assertEqual(creation.schedules, [])
        self.assertEqual(_count(self.db, Planning), 1)
        self.assertEqual(_count(self.db, Schedule), 0)

    def test_validation_failure_writes_nothing(self) -> None:
        with self.assertRaises(ValidationError):
            create_planning_with_schedules(
                self.db,
                schedules=[{"day": "monday", "time_in": "09:00", "time_out": "17:00:00"}],
            )

        self.assertEqual(_count(self.db, Planning), 0)
        self.assertEqual(_count(self.db, Schedule), 0)

    def test_schedule_insert_failure_deletes_planning(self) -> None:
        with _commit_failing_on(self.db, 2):
            with self.assertRaises(StoreError) as exc:
                create_planning_with_schedules(self.db, schedules=WEEKDAY_SCHEDULES)

        self.assertEqual(exc.exception.status_code, 500)
        self.assertEqual(exc.exception.message, "Failed to create schedules, planning creation rolled back")
        self.assertIn("Schedules insert error", exc.exception.error or "")
        self.assertEqual(_count(self.db, Planning), 0)
        self.assertEqual(_count(self.db, Schedule), 0)

    def test_failed_compensation_is_logged_distinctly(self) -> None:
        with _commit_failing_on(self.db, 2, 3):
            with self.assertLogs("punchclock.planning", level="ERROR") as logs:
                with self.assertRaises(StoreError):
                    create_planning_with_schedules(self.db, schedules=WEEKDAY_SCHEDULES)

        self.assertTrue(any("planning_compensation_failed" in line for line in logs.output))
        # The orphan stays behind for the health check to report.
        self.assertEqual(_count(self.db, Planning), 1)


class PlanningReplacementTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _sqlite_session()
        self.previous = Planning(is_default=True)
        self.db.add(self.previous)
        self.db.flush()
        self.team = Team(name="Ops", lateness_limit=10, timezone="UTC", default_planning_id=self.previous.id)
        self.db.add(self.team)
        self.db.flush()
        self.user_team = UserTeam(user_id=5, team_id=self.team.id, role=TeamRole.EMPLOYEE)
        self.db.add(self.user_team)
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def test_team_default_replacement_keeps_previous_planning(self) -> None:
        replacement = replace_team_default_planning(self.db, team_id=self.team.id, schedules=WEEKDAY_SCHEDULES)

        self.assertEqual(replacement.previous_planning_id, self.previous.id)
        self.assertNotEqual(replacement.new_planning_id, self.previous.id)
        self.assertEqual(self.db.get(Team, self.team.id).default_planning_id, replacement.new_planning_id)
        self.assertIsNotNone(self.db.get(Planning, self.previous.id))
        self.assertTrue(self.db.get(Planning, replacement.new_planning_id).is_default)

    def test_team_default_replacement_rejects_empty_schedules(self) -> None:
        with self.assertRaises(ValidationError) as exc:
            replace_team_default_planning(self.db, team_id=self.team.id, schedules=[])

        self.assertEqual(exc.exception.message, "Schedules array must not be empty")
        self.assertEqual(_count(self.db, Planning), 1)

    def test_team_default_replacement_unknown_team(self) -> None:
        with self.assertRaises(NotFoundError) as exc:
            replace_team_default_planning(self.db, team_id=999, schedules=WEEKDAY_SCHEDULES)

        self.assertEqual(exc.exception.message, "Team not found")

    def test_team_link_failure_rolls_back_new_planning(self) -> None:
        team_id = self.team.id
        previous_id = self.previous.id

        with _commit_failing_on(self.db, 3, message="Update failed"):
            with self.assertRaises(StoreError) as exc:
                replace_team_default_planning(self.db, team_id=team_id, schedules=WEEKDAY_SCHEDULES)

        self.assertEqual(exc.exception.message, "Failed to update team default planning, new planning rolled back")
        self.assertEqual(self.db.get(Team, team_id).default_planning_id, previous_id)
        self.assertEqual(list(self.db.scalars(select(Planning.id)).all()), [previous_id])
        self.assertEqual(_count(self.db, Schedule), 0)

    def test_user_team_replacement_with_empty_schedules_is_vacation(self) -> None:
        replacement = replace_user_team_planning(self.db, user_team_id=self.user_team.id, schedules=[])

        self.assertTrue(replacement.is_vacation_planning)
        self.assertIsNone(replacement.previous_planning_id)
        self.assertEqual(self.db.get(UserTeam, self.user_team.id).planning_id, replacement.new_planning_id)
        self.assertFalse(self.db.get(Planning, replacement.new_planning_id).is_default)

    def test_user_team_replacement_with_schedules(self) -> None:
        replacement = replace_user_team_planning(
            self.db,
            user_team_id=self.user_team.id,
            schedules=WEEKDAY_SCHEDULES,
        )

        self.assertFalse(replacement.is_vacation_planning)
        self.assertEqual(len(replacement.schedules), 2)

    def test_user_team_replacement_unknown_association(self) -> None:
        with self.assertRaises(NotFoundError) as exc:
            replace_user_team_planning(self.db, user_team_id=404, schedules=[])

        self.assertEqual(exc.exception.message, "User-team association not found")


class PlanningDeletionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _sqlite_session()
        self.planning = create_planning_with_schedules(self.db, schedules=WEEKDAY_SCHEDULES).planning
        self.planning_id = self.planning.id

    def tearDown(self) -> None:
        self.db.close()

    def test_missing_planning_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            delete_planning(self.db, planning_id=999)

    def test_team_reference_blocks_deletion(self) -> None:
        team = Team(name="Night crew", lateness_limit=0, timezone="UTC", default_planning_id=self.planning_id)
        self.db.add(team)
        self.db.commit()

        with self.assertRaises(ConflictError) as exc:
            delete_planning(self.db, planning_id=self.planning_id)

        self.assertEqual(exc.exception.message, "Cannot delete planning: it is referenced by teams")
        self.assertEqual(exc.exception.data, {"referencing_teams": [{"id": team.id, "name": "Night crew"}]})

    def test_clock_reference_blocks_deletion(self) -> None:
        team = Team(name="Ops", lateness_limit=0, timezone="UTC")
        self.db.add(team)
        self.db.flush()
        user_team = UserTeam(user_id=1, team_id=team.id, role=TeamRole.EMPLOYEE)
        self.db.add(user_team)
        self.db.flush()
        self.db.add(
            Clock(
                user_team_id=user_team.id,
                planning_id=self.planning_id,
                arrival_time=datetime(2026, 10, 19, 9, 0),
                departure_time=datetime(2026, 10, 19, 17, 0),
            )
        )
        self.db.commit()

        with self.assertRaises(ConflictError) as exc:
            delete_planning(self.db, planning_id=self.planning_id)

        self.assertEqual(exc.exception.message, "Cannot delete planning: it is referenced by clock entries")

    def test_unreferenced_planning_is_deleted_and_overrides_cleared(self) -> None:
        team = Team(name="Ops", lateness_limit=0, timezone="UTC")
        self.db.add(team)
        self.db.flush()
        user_team = UserTeam(user_id=1, team_id=team.id, role=TeamRole.EMPLOYEE, planning_id=self.planning_id)
        self.db.add(user_team)
        self.db.commit()
        user_team_id = user_team.id

        deleted = delete_planning(self.db, planning_id=self.planning_id)

        self.assertEqual(deleted.id, self.planning_id)
        self.assertEqual(len(deleted.schedules), 2)
        self.assertEqual(_count(self.db, Planning), 0)
        self.assertEqual(_count(self.db, Schedule), 0)
        self.assertIsNone(self.db.get(UserTeam, user_team_id).planning_id)


class ScheduleUpdateTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _sqlite_session()
        creation = create_planning_with_schedules(self.db, schedules=WEEKDAY_SCHEDULES)
        self.monday_id = creation.schedules[0].id

    def tearDown(self) -> None:
        self.db.close()

    def test_updates_single_field(self) -> None:
        schedule = update_schedule(self.db, schedule_id=self.monday_id, time_out="18:30:00")

        self.assertEqual(schedule.time_in, time(9, 0))
        self.assertEqual(schedule.time_out, time(18, 30))

    def test_duplicate_day_is_a_conflict(self) -> None:
        with self.assertRaises(ConflictError) as exc:
            update_schedule(self.db, schedule_id=self.monday_id, day="Tuesday")

        self.assertEqual(exc.exception.message, "A schedule for this day already exists in the planning")

    def test_empty_update_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as exc:
            update_schedule(self.db, schedule_id=self.monday_id)

        self.assertEqual(exc.exception.message, "At least one field must be provided to update")

    def test_bad_time_names_the_field(self) -> None:
        with self.assertRaises(ValidationError) as exc:
            update_schedule(self.db, schedule_id=self.monday_id, time_in="9h00")

        self.assertEqual(exc.exception.message, "time_in format must be HH:MM:SS")

    def test_missing_schedule(self) -> None:
        with self.assertRaises(NotFoundError) as exc:
            update_schedule(self.db, schedule_id=999, day="friday")

        self.assertEqual(exc.exception.message, "Schedule not found")


if __name__ == "__main__":
    unittest.main()
