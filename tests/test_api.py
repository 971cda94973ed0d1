import os
import sys
import unittest

import pytest
import yaml
from fastapi.testclient import TestClient

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from rest_api import ORPHAN_WARNING, GymAPI


class APITestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_api_workout.db"
        self.yaml_path = "test_api_settings.yaml"
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)
        self.api = GymAPI(db_path=self.db_path, yaml_path=self.yaml_path)
        self.client = TestClient(self.api.app)

    def tearDown(self) -> None:
        self.api.close()
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)

    def _exercise_id(self, name: str) -> int:
        response = self.client.get("/exercises")
        self.assertEqual(response.status_code, 200)
        return next(e["id"] for e in response.json() if e["name"] == name)

    def _push_day(self) -> tuple[int, int]:
        response = self.client.post("/templates", json={"name": "Push Day"})
        self.assertEqual(response.status_code, 200)
        template_id = response.json()["id"]
        response = self.client.post(
            f"/templates/{template_id}/exercises",
            json={"exercise_id": self._exercise_id("Push Ups")},
        )
        self.assertEqual(response.status_code, 200)
        response = self.client.post(
            "/schedules",
            json={
                "workout_id": template_id,
                "start_date": "2025-01-15",
                "recurrence_type": "weekly",
            },
        )
        self.assertEqual(response.status_code, 200)
        return template_id, response.json()["id"]

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.json(), {"status": "ok"})

    def test_default_exercises_listed(self) -> None:
        response = self.client.get("/exercises")
        names = [e["name"] for e in response.json()]
        self.assertEqual(len(names), 10)
        self.assertIn("Front Lever", names)
        dips = next(e for e in response.json() if e["name"] == "Dips")
        self.assertTrue(dips["is_default"])
        self.assertEqual(dips["sets"][-1], {"value": 10, "weight": 0.0, "rest": None})

    def test_exercise_crud(self) -> None:
        response = self.client.post(
            "/exercises",
            json={"name": "Handstand", "mode": "static"},
        )
        self.assertEqual(response.status_code, 200)
        ex_id = response.json()["id"]
        detail = self.client.get(f"/exercises/{ex_id}").json()
        self.assertEqual(detail["type"], "static")
        self.assertEqual(len(detail["sets"]), 4)
        self.assertEqual(detail["sets"][0]["value"], 30)

        response = self.client.put(
            f"/exercises/{ex_id}",
            json={"name": "Wall Handstand", "mode": "static", "rest_after_exercise": 0},
        )
        self.assertEqual(response.status_code, 200)
        detail = self.client.get(f"/exercises/{ex_id}").json()
        self.assertEqual(detail["name"], "Wall Handstand")
        self.assertIsNone(detail["rest_after_exercise"])

        self.assertEqual(self.client.delete(f"/exercises/{ex_id}").status_code, 200)
        self.assertEqual(self.client.get(f"/exercises/{ex_id}").status_code, 404)

    def test_default_exercise_cannot_be_deleted(self) -> None:
        dips = self._exercise_id("Dips")
        response = self.client.delete(f"/exercises/{dips}")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["field"], "is_default")
        self.client.post(f"/exercises/{dips}/disable")
        names = [e["name"] for e in self.client.get("/exercises").json()]
        self.assertNotIn("Dips", names)
        names = [
            e["name"]
            for e in self.client.get("/exercises", params={"include_disabled": True}).json()
        ]
        self.assertIn("Dips", names)

    def test_validation_errors_name_the_field(self) -> None:
        response = self.client.post("/exercises", json={"name": "   "})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["field"], "name")

        template_id = self.client.post("/templates", json={"name": "Hangs"}).json()["id"]
        response = self.client.post(
            "/schedules",
            json={
                "workout_id": template_id,
                "start_date": "2025-01-15",
                "recurrence_type": "offset",
            },
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["field"], "offset_days")

    def test_duplicate_template_conflicts(self) -> None:
        self.client.post("/templates", json={"name": "Legs"})
        response = self.client.post("/templates", json={"name": "LEGS"})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["operation"], "workout_templates.create")

    def test_missing_template_is_404(self) -> None:
        self.assertEqual(self.client.get("/templates/999").status_code, 404)

    def test_template_delete_blocked_by_schedule(self) -> None:
        template_id, schedule_id = self._push_day()
        response = self.client.delete(f"/templates/{template_id}")
        self.assertEqual(response.status_code, 409)
        self.client.delete(f"/schedules/{schedule_id}")
        response = self.client.delete(f"/templates/{template_id}")
        self.assertEqual(response.status_code, 200)

    def test_template_detail_and_reorder(self) -> None:
        template_id, _ = self._push_day()
        self.client.post(
            f"/templates/{template_id}/exercises",
            json={"exercise_id": self._exercise_id("Dips"), "sets": [{"value": 6}]},
        )
        detail = self.client.get(f"/templates/{template_id}").json()
        ids = [e["id"] for e in detail["exercises"]]
        self.assertEqual(len(ids), 2)
        self.assertEqual(detail["exercises"][1]["sets"], [{"value": 6, "weight": 0.0, "rest": None}])

        response = self.client.put(
            f"/templates/{template_id}/exercises/order", json=list(reversed(ids))
        )
        self.assertEqual(response.status_code, 200)
        rows = self.client.get(f"/templates/{template_id}/exercises").json()
        self.assertEqual([r["id"] for r in rows], list(reversed(ids)))

        response = self.client.delete(f"/template_exercises/{ids[1]}")
        self.assertEqual(response.status_code, 200)
        rows = self.client.get(f"/templates/{template_id}/exercises").json()
        self.assertEqual([r["order_index"] for r in rows], [0])

    def test_template_exercise_update_order(self) -> None:
        template_id, _ = self._push_day()
        dips = self._exercise_id("Dips")
        self.client.post(f"/templates/{template_id}/exercises", json={"exercise_id": dips})
        second = self.client.get(f"/templates/{template_id}/exercises").json()[1]
        body = {
            "exercise_id": dips,
            "type": "dynamic",
            "mode": "reps",
            "sets": [{"value": 4}],
        }
        response = self.client.put(f"/template_exercises/{second['id']}", json=body)
        self.assertEqual(response.status_code, 200)
        rows = self.client.get(f"/templates/{template_id}/exercises").json()
        self.assertEqual([r["order_index"] for r in rows], [0, 1])
        self.assertEqual(rows[1]["sets"][0]["value"], 4)

        body["order_index"] = 7
        response = self.client.put(f"/template_exercises/{second['id']}", json=body)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["field"], "order_index")

    def test_occurrences_and_preview(self) -> None:
        _, schedule_id = self._push_day()
        response = self.client.get(
            f"/schedules/{schedule_id}/occurrences",
            params={"start": "2025-01-01", "end": "2025-01-31"},
        )
        self.assertEqual(response.json(), ["2025-01-15", "2025-01-22", "2025-01-29"])
        response = self.client.get(
            "/recurrence/preview",
            params={
                "start_date": "2025-01-15",
                "recurrence_type": "offset",
                "offset_days": 3,
                "start": "2025-01-15",
                "end": "2025-01-24",
            },
        )
        self.assertEqual(
            response.json(), ["2025-01-15", "2025-01-18", "2025-01-21", "2025-01-24"]
        )

    def test_override_flow(self) -> None:
        _, schedule_id = self._push_day()
        day = f"/schedules/{schedule_id}/days/2025-01-22"
        info = self.client.get(day).json()
        self.assertTrue(info["occurs"])
        self.assertFalse(info["has_override"])

        response = self.client.post(f"{day}/override")
        self.assertEqual(response.status_code, 200)
        response = self.client.post(
            f"{day}/exercises", json={"exercise_id": self._exercise_id("Bench Press")}
        )
        self.assertEqual(response.status_code, 200)
        rows = self.client.get(f"{day}/exercises").json()
        self.assertEqual(len(rows), 2)
        self.assertIsNotNone(rows[0]["workout_exercise_id"])
        self.assertIsNone(rows[1]["workout_exercise_id"])

        response = self.client.post(f"{day}/override")
        self.assertEqual(response.status_code, 400)

        calendar = self.client.get("/calendar/2025-01-22").json()
        self.assertTrue(calendar[0]["has_override"])
        self.assertEqual(len(calendar[0]["exercises"]), 2)

        self.assertEqual(self.client.delete(f"{day}/override").json(), {"reverted": True})
        calendar = self.client.get("/calendar/2025-01-22").json()
        self.assertFalse(calendar[0]["has_override"])
        self.assertEqual(len(calendar[0]["exercises"]), 1)

    def test_orphan_uncomplete_needs_confirmation(self) -> None:
        template_id, schedule_id = self._push_day()
        response = self.client.post(f"/schedules/{schedule_id}/days/2025-01-22/complete")
        self.assertEqual(response.status_code, 200)
        completed_id = response.json()["id"]

        calendar = self.client.get("/calendar/2025-01-22").json()
        self.assertEqual(calendar[0]["state"], "completed")

        self.client.delete(f"/schedules/{schedule_id}")
        calendar = self.client.get("/calendar/2025-01-22").json()
        self.assertEqual(len(calendar), 1)
        self.assertEqual(calendar[0]["state"], "orphanedCompleted")
        self.assertTrue(calendar[0]["is_orphaned"])
        self.assertEqual(self.client.get("/calendar/2025-01-29").json(), [])

        response = self.client.delete(f"/completions/{completed_id}")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["warning"], ORPHAN_WARNING)
        self.assertEqual(response.json()["completed_id"], completed_id)

        response = self.client.delete(
            f"/completions/{completed_id}", params={"confirm": True}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get("/calendar/2025-01-22").json(), [])

    def test_manual_completion_and_history(self) -> None:
        template_id, _ = self._push_day()
        push_ups = self._exercise_id("Push Ups")
        entry = {
            "exercise_id": push_ups,
            "type": "dynamic",
            "mode": "reps",
            "sets": [{"value": 12, "rest": 60}, {"value": 10}],
        }
        response = self.client.post(
            "/completions",
            json={"workout_id": template_id, "date": "2025-01-15", "exercises": [entry]},
        )
        self.assertEqual(response.status_code, 200)
        completed = response.json()
        self.assertEqual(completed["workout_name"], "Push Day")

        response = self.client.post(
            "/completions",
            json={"workout_id": template_id, "date": "2025-01-15", "exercises": [entry]},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["field"], "scheduled_date")

        exercise_row = completed["exercises"][0]
        entry["sets"] = [{"value": 15}]
        response = self.client.put(f"/completed_exercises/{exercise_row['id']}", json=entry)
        self.assertEqual(response.status_code, 200)

        history = self.client.get(f"/exercises/{push_ups}/history").json()
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0]["sets"], [{"value": 15, "weight": 0.0, "rest": None}])

        listed = self.client.get("/completions", params={"date": "2025-01-15"}).json()
        self.assertEqual([c["id"] for c in listed], [completed["id"]])

    def test_calendar_range(self) -> None:
        self._push_day()
        response = self.client.get(
            "/calendar", params={"start": "2025-01-10", "end": "2025-01-25"}
        )
        self.assertEqual(response.json(), ["2025-01-15", "2025-01-22"])

    def test_settings_file_controls_defaults(self) -> None:
        self.api.close()
        os.remove(self.db_path)
        with open(self.yaml_path, "w", encoding="utf-8") as f:
            yaml.safe_dump({"default_icon_code_point": 7, "seed_default_exercises": False}, f)
        self.api = GymAPI(db_path=self.db_path, yaml_path=self.yaml_path)
        self.client = TestClient(self.api.app)
        self.assertEqual(self.client.get("/exercises").json(), [])
        template_id = self.client.post("/templates", json={"name": "Legs"}).json()["id"]
        detail = self.client.get(f"/templates/{template_id}").json()
        self.assertEqual(detail["icon_code_point"], 7)


class FakeSocket:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent = []

    async def send_json(self, event: dict) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(event)


@pytest.mark.asyncio
async def test_broadcast_drops_dead_watchers(tmp_path):
    api = GymAPI(db_path=str(tmp_path / "ws.db"), yaml_path=str(tmp_path / "none.yaml"))
    alive, dead = FakeSocket(), FakeSocket(fail=True)
    api.watchers.extend([alive, dead])
    await api._broadcast({"type": "tables_changed", "tables": ["schedules"]})
    assert alive.sent == [{"type": "tables_changed", "tables": ["schedules"]}]
    assert api.watchers == [alive]
    api.close()


@pytest.mark.asyncio
async def test_mutations_reach_watchers(tmp_path):
    import asyncio

    api = GymAPI(db_path=str(tmp_path / "ws.db"), yaml_path=str(tmp_path / "none.yaml"))
    socket = FakeSocket()
    api.watchers.append(socket)
    await api.planner.create_template("Legs")
    await asyncio.sleep(0)
    assert socket.sent == [{"type": "tables_changed", "tables": ["workout_templates"]}]
    api.close()


if __name__ == "__main__":
    unittest.main()
