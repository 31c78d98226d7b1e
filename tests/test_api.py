"""API tests driving the engine end to end through FastAPI."""
from datetime import timedelta

from fastapi.testclient import TestClient

from api.app import create_app
from fakes import FixedClock, RecordingNotifier, make_engine


def _bin(bin_id, lon, lat, fill_level, clock, **extra):
    body = {
        "bin_id": bin_id,
        "location": {"lon": lon, "lat": lat},
        "fill_level": fill_level,
        "zone": "north",
        "last_collected_at": clock.now.isoformat(),
    }
    body.update(extra)
    return body


class TestSchedulingAPI:
    def setup_method(self):
        self.clock = FixedClock()
        self.notifier = RecordingNotifier()
        self.engine = make_engine(clock=self.clock, notifier=self.notifier)
        self.app = create_app(self.engine, run_sweeps=False)

    def window(self, hours_from_now=1, length=1):
        start = self.clock.now + timedelta(hours=hours_from_now)
        return {"start": start.isoformat(), "end": (start + timedelta(hours=length)).isoformat()}

    def test_health(self):
        with TestClient(self.app) as client:
            assert client.get("/health").json() == {"status": "ok"}

    def test_bins(self):
        with TestClient(self.app) as client:
            response = client.post("/api/bins", json=_bin("b1", 1, 0, 60, self.clock))
            assert response.status_code == 200
            assert response.json()["data"]["version"] == 1

            assert client.get("/api/bins").json()["count"] == 1
            assert client.get("/api/bins/b1").json()["data"]["fill_level"] == 60

            priority = client.get("/api/bins/b1/priority").json()["data"]
            assert priority["priority"] == 5
            assert priority["tier"] == "warning"

            lowered = client.post("/api/bins", json=_bin("b1", 1, 0, 10, self.clock))
            assert lowered.status_code == 400
            assert lowered.json()["error"] == "ValidationError"

            missing = client.get("/api/bins/nope")
            assert missing.status_code == 404
            assert missing.json()["status"] == "error"

            assert client.delete("/api/bins/b1").status_code == 200
            assert client.delete("/api/bins/b1").status_code == 404

    def test_collection_scenario(self):
        with TestClient(self.app) as client:
            client.post("/api/bins", json=_bin("b1", 1, 0, 85, self.clock))
            client.post("/api/bins", json=_bin("b2", 2, 1, 30, self.clock))

            score = client.get("/api/bins/b1/priority").json()["data"]["priority"]
            assert 8 <= score <= 10

            sweep = client.post("/api/sweeps")
            assert sweep.status_code == 200
            assert len(sweep.json()["data"]["created"]) == 1
            pending = client.get("/api/schedules", params={"bin_id": "b1", "status": "pending"}).json()["data"]
            assert len(pending) == 1

            built = client.post("/api/routes/build", json={
                "bins": ["b1", "b2"],
                "start": {"lon": 0, "lat": 0},
                "end": {"lon": 3, "lat": 0},
                "collector": "c1",
            })
            assert built.status_code == 201
            route = built.json()["data"]
            assert len(route["stops"]) == 2
            assert sorted(stop["order"] for stop in route["stops"]) == [1, 2]
            assert route["distance"] > 0
            assert route["status"] == "planned"
            assert route["geometry"]["type"] == "LineString"
            route_id = route["route_id"]

            started = client.patch(f"/api/routes/{route_id}/status", json={"status": "in_progress"})
            assert started.json()["data"]["status"] == "in_progress"

            for bin_id in ("b1", "b2"):
                response = client.patch(f"/api/routes/{route_id}/stops/{bin_id}",
                                        json={"action": "collected", "actual_fill_level": 5})
                assert response.status_code == 200

            route = client.get(f"/api/routes/{route_id}").json()["data"]
            assert route["status"] == "completed"
            assert route["completion_rate"] == 1.0

            completed = client.get("/api/schedules", params={"status": "completed"}).json()["data"]
            assert sorted(s["bin_id"] for s in completed) == ["b1", "b2"]
            for bin_id in ("b1", "b2"):
                assert client.get(f"/api/bins/{bin_id}").json()["data"]["fill_level"] == 5
            assert "route_completed" in self.notifier.names()

    def test_single_bin_route_fails(self):
        with TestClient(self.app) as client:
            client.post("/api/bins", json=_bin("b1", 1, 0, 85, self.clock))
            response = client.post("/api/routes/build", json={
                "bins": ["b1"],
                "start": {"lon": 0, "lat": 0},
                "end": {"lon": 3, "lat": 0},
                "collector": "c1",
            })
            assert response.status_code == 400
            assert response.json()["error"] == "InsufficientStopsError"
            assert client.get("/api/routes").json()["data"] == []

    def test_schedule_admin_actions(self):
        with TestClient(self.app) as client:
            client.post("/api/bins", json=_bin("b1", 1, 0, 40, self.clock))

            created = client.post("/api/schedules", json={
                "bin": "b1", "collector": "c1", "window": self.window(), "recurrence": "weekly",
            })
            assert created.status_code == 201
            schedule_id = created.json()["data"]["schedule_id"]

            duplicate = client.post("/api/schedules", json={"bin": "b1", "collector": "c2", "window": self.window(2)})
            assert duplicate.status_code == 409

            moved = client.post(f"/api/schedules/{schedule_id}/reschedule",
                                json={"window": self.window(5), "reason": "road works"})
            assert moved.status_code == 201
            successor = moved.json()["data"]
            assert successor["previous_schedule_id"] == schedule_id

            again = client.post(f"/api/schedules/{schedule_id}/cancel", json={"reason": "late"})
            assert again.status_code == 409
            assert again.json()["error"] == "InvalidStateError"

            too_early = client.post(f"/api/schedules/{successor['schedule_id']}/missed", json={})
            assert too_early.status_code == 409

            done = client.post(f"/api/schedules/{successor['schedule_id']}/complete", json={"actual_fill_level": 0})
            assert done.json()["data"]["status"] == "completed"
            # weekly recurrence queued the next collection
            assert len(client.get("/api/schedules", params={"status": "pending"}).json()["data"]) == 1

            assert client.get("/api/schedules/unknown").status_code == 404

    def test_bad_input(self):
        with TestClient(self.app) as client:
            client.post("/api/bins", json=_bin("b1", 1, 0, 40, self.clock))
            backwards = {"start": self.window()["end"], "end": self.window()["start"]}

            response = client.post("/api/schedules", json={"bin": "b1", "collector": "c1", "window": backwards})
            assert response.status_code == 400

            response = client.post("/api/schedules", json={"bin": "ghost", "collector": "c1", "window": self.window()})
            assert response.status_code == 422
            assert response.json()["error"] == "DataConsistencyError"

            response = client.post("/api/schedules", json={"bin": "b1"})
            assert response.status_code == 400

            response = client.patch("/api/routes/nope/status", json={"status": "flying"})
            assert response.status_code == 400

    def test_overlapping_sweep_conflicts(self):
        with TestClient(self.app) as client:
            self.engine.agent._run_lock.acquire()
            try:
                assert client.post("/api/sweeps").status_code == 409
            finally:
                self.engine.agent._run_lock.release()
