import unittest
from collections.abc import Generator
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from punchclock.db import Base, get_db
from punchclock.main import app
from punchclock.models import AuditActorType, AuditLog, Weekday

MONDAY_ONLY = [{"day": "monday", "time_in": "09:00:00", "time_out": "17:00:00"}]


def override_get_db(session_factory: sessionmaker) -> object:
    def _override() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    return _override


class PlanningEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        self.session_factory = sessionmaker(bind=engine, autoflush=False, future=True)
        app.dependency_overrides[get_db] = override_get_db(self.session_factory)
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def _create_team(self, **overrides: object) -> dict:
        payload = {"name": "Ops", "lateness_limit": 10, "timezone": "UTC"}
        payload.update(overrides)
        response = self.client.post("/api/teams", json=payload)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["data"]

    def test_create_planning_with_schedules(self) -> None:
        response = self.client.post(
            "/api/plannings",
            json={"is_default": True, "schedules": MONDAY_ONLY},
            headers={"X-Actor-Id": "42"},
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["message"], "Planning created successfully")
        self.assertEqual(body["data"]["is_default"], True)
        self.assertEqual(
            [(item["day"], item["time_in"], item["time_out"]) for item in body["data"]["schedules"]],
            [("monday", "09:00:00", "17:00:00")],
        )
        self.assertNotIn("warnings", body)

        with self.session_factory() as db:
            audit = db.scalar(select(AuditLog).where(AuditLog.action == "PLANNING_CREATED"))
        self.assertIsNotNone(audit)
        self.assertEqual(audit.actor_type, AuditActorType.USER)
        self.assertEqual(audit.actor_id, "42")

    def test_create_planning_without_schedules_is_allowed(self) -> None:
        response = self.client.post("/api/plannings", json={})

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["data"]["schedules"], [])

    def test_create_planning_validation_error_envelope(self) -> None:
        response = self.client.post(
            "/api/plannings",
            json={"schedules": [{"day": "monday", "time_in": "09:00:00", "time_out": "5pm"}]},
            headers={"X-Request-Id": "req-123"},
        )

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["success"], False)
        self.assertEqual(body["message"], "Time format must be HH:MM:SS")
        self.assertEqual(body["code"], "INVALID_TIME_FORMAT")
        self.assertEqual(body["request_id"], "req-123")
        self.assertEqual(response.headers["X-Request-Id"], "req-123")
        self.assertEqual(self.client.get("/api/plannings").json()["count"], 0)

    def test_malformed_body_is_a_400(self) -> None:
        response = self.client.post(
            "/api/plannings",
            content="{not json",
            headers={"Content-Type": "application/json"},
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "VALIDATION_ERROR")

    def test_unknown_planning_is_404(self) -> None:
        response = self.client.get("/api/plannings/999")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["message"], "Planning not found")

    def test_deletion_blocked_until_team_reference_is_unset(self) -> None:
        team = self._create_team()
        replaced = self.client.put(f"/api/teams/{team['id']}/default-planning", json={"schedules": MONDAY_ONLY})
        self.assertEqual(replaced.status_code, 200, replaced.text)
        planning_id = replaced.json()["data"]["new_planning_id"]
        self.assertIsNone(replaced.json()["data"]["previous_planning_id"])

        blocked = self.client.delete(f"/api/plannings/{planning_id}")
        self.assertEqual(blocked.status_code, 409)
        self.assertEqual(blocked.json()["message"], "Cannot delete planning: it is referenced by teams")
        self.assertEqual(blocked.json()["data"]["referencing_teams"], [{"id": team["id"], "name": "Ops"}])

        unset = self.client.patch(f"/api/teams/{team['id']}", json={"default_planning_id": None})
        self.assertEqual(unset.status_code, 200)
        self.assertIsNone(unset.json()["data"]["default_planning_id"])

        deleted = self.client.delete(f"/api/plannings/{planning_id}")
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(deleted.json()["data"]["id"], planning_id)
        self.assertEqual(self.client.get(f"/api/plannings/{planning_id}").status_code, 404)

    def test_team_default_replacement_requires_schedules(self) -> None:
        team = self._create_team()

        response = self.client.put(f"/api/teams/{team['id']}/default-planning", json={"schedules": []})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Schedules array must not be empty")

    def test_user_team_vacation_planning(self) -> None:
        team = self._create_team()
        user_team = self.client.post(
            "/api/user-teams",
            json={"user_id": 3, "team_id": team["id"], "role": "employee"},
        ).json()["data"]

        response = self.client.put(f"/api/user-teams/{user_team['id']}/planning", json={"schedules": []})

        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertTrue(data["is_vacation_planning"])
        self.assertEqual(data["planning"]["schedules"], [])

        effective = self.client.get(f"/api/user-teams/{user_team['id']}/effective-planning").json()["data"]
        self.assertEqual(effective["planning_id"], data["new_planning_id"])
        self.assertFalse(effective["is_team_default"])

    def test_schedule_patch_duplicate_day_conflict(self) -> None:
        created = self.client.post(
            "/api/plannings",
            json={
                "schedules": [
                    {"day": "monday", "time_in": "09:00:00", "time_out": "17:00:00"},
                    {"day": "tuesday", "time_in": "09:00:00", "time_out": "17:00:00"},
                ]
            },
        ).json()["data"]
        tuesday_id = created["schedules"][1]["id"]

        conflict = self.client.patch(f"/api/schedules/{tuesday_id}", json={"day": "monday"})
        updated = self.client.patch(f"/api/schedules/{tuesday_id}", json={"time_in": "08:30:00"})

        self.assertEqual(conflict.status_code, 409)
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.json()["data"]["time_in"], "08:30:00")
        listed = self.client.get(f"/api/plannings/{created['id']}/schedules").json()
        self.assertEqual(listed["count"], 2)


class TeamEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        app.dependency_overrides[get_db] = override_get_db(
            sessionmaker(bind=engine, autoflush=False, future=True)
        )
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def test_team_defaults_to_configured_timezone(self) -> None:
        response = self.client.post("/api/teams", json={"name": "Ops", "lateness_limit": 0})

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["data"]["timezone"], "Europe/Paris")

    def test_team_validation(self) -> None:
        no_name = self.client.post("/api/teams", json={"lateness_limit": 5})
        negative = self.client.post("/api/teams", json={"name": "Ops", "lateness_limit": -1})
        bad_zone = self.client.post("/api/teams", json={"name": "Ops", "lateness_limit": 5, "timezone": "Mars/Base"})

        self.assertEqual(no_name.json()["message"], "Name is required")
        self.assertEqual(negative.json()["message"], "lateness_limit must not be null or negative")
        self.assertEqual(bad_zone.status_code, 400)
        self.assertTrue(bad_zone.json()["message"].startswith("Invalid timezone: Mars/Base"))

    def test_user_team_association_rules(self) -> None:
        team = self.client.post("/api/teams", json={"name": "Ops", "lateness_limit": 0}).json()["data"]
        payload = {"user_id": 9, "team_id": team["id"], "role": "manager"}

        created = self.client.post("/api/user-teams", json=payload)
        duplicate = self.client.post("/api/user-teams", json=payload)
        bad_role = self.client.post("/api/user-teams", json={**payload, "user_id": 10, "role": "owner"})
        missing_team = self.client.post("/api/user-teams", json={**payload, "team_id": 999})
        missing_fields = self.client.post("/api/user-teams", json={"user_id": 9})

        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["data"]["role"], "manager")
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["message"], "User is already associated with this team")
        self.assertEqual(bad_role.json()["message"], "Invalid role. Must be one of: employee, manager")
        self.assertEqual(missing_team.status_code, 404)
        self.assertEqual(missing_fields.json()["message"], "user_id, team_id and role are required")

    def test_effective_planning_without_any_planning(self) -> None:
        team = self.client.post("/api/teams", json={"name": "Ops", "lateness_limit": 0}).json()["data"]
        user_team = self.client.post(
            "/api/user-teams",
            json={"user_id": 1, "team_id": team["id"], "role": "employee"},
        ).json()["data"]

        response = self.client.get(f"/api/user-teams/{user_team['id']}/effective-planning")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["message"], "No planning assigned to this user-team")

    def test_team_listing_and_cascading_delete(self) -> None:
        team = self.client.post("/api/teams", json={"name": "Ops", "lateness_limit": 0}).json()["data"]
        for user_id in (1, 2):
            self.client.post(
                "/api/user-teams",
                json={"user_id": user_id, "team_id": team["id"], "role": "employee"},
            )

        members = self.client.get(f"/api/teams/{team['id']}/user-teams").json()
        by_user = self.client.get("/api/user-teams", params={"user_id": 2}).json()
        deleted = self.client.delete(f"/api/teams/{team['id']}")

        self.assertEqual(members["count"], 2)
        self.assertEqual([item["user_id"] for item in by_user["data"]], [2])
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(self.client.get(f"/api/teams/{team['id']}").status_code, 404)
        self.assertEqual(self.client.get("/api/user-teams").json()["count"], 0)

    def test_current_schedule_for_today(self) -> None:
        team = self.client.post("/api/teams", json={"name": "Ops", "lateness_limit": 0}).json()["data"]
        self.client.put(f"/api/teams/{team['id']}/default-planning", json={"schedules": MONDAY_ONLY})
        user_team = self.client.post(
            "/api/user-teams",
            json={"user_id": 1, "team_id": team["id"], "role": "employee"},
        ).json()["data"]
        url = f"/api/user-teams/{user_team['id']}/current-schedule"

        with patch("punchclock.routers.teams.current_weekday", return_value=Weekday.MONDAY):
            monday = self.client.get(url)
        with patch("punchclock.routers.teams.current_weekday", return_value=Weekday.SUNDAY):
            sunday = self.client.get(url)

        self.assertEqual(monday.status_code, 200)
        self.assertEqual(monday.json()["message"], "Current default schedule for monday retrieved successfully")
        self.assertEqual(monday.json()["data"]["time_in"], "09:00:00")
        self.assertEqual(sunday.status_code, 404)
        self.assertEqual(sunday.json()["message"], "No schedule found for sunday")

    def test_health_reports_schema_guard(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")
        self.assertIn("schema_guard", response.json())


if __name__ == "__main__":
    unittest.main()
