"""Tests for SQL persistence with optimistic versioning."""
from datetime import timedelta

import pytest

from core.blackboard import Blackboard
from core.exceptions import ConflictError
from fakes import FixedClock, make_bin, make_engine
from models.collection_models import Location, ScheduleStatus, TimeWindow
from storage.sql_store import SQLStore


class TestSQLStore:
    def setup_method(self):
        self.store = SQLStore("sqlite://")
        self.clock = FixedClock()

    def test_state_survives_reload(self):
        engine = make_engine(clock=self.clock, store=self.store)
        engine.blackboard.register_bin(make_bin("b1", 1, 0, fill_level=70))
        engine.blackboard.register_bin(make_bin("b2", 2, 0, fill_level=40))
        window = TimeWindow(self.clock.now, self.clock.now + timedelta(hours=1))
        schedule = engine.schedules.create_schedule("b1", "c1", window, notes="front gate")
        route = engine.planner.plan(["b1", "b2"], Location(0, 0), Location(3, 0), "c1")

        reloaded = Blackboard(self.store)
        reloaded.load_from_store()

        assert reloaded.get_bin("b1").fill_level == 70
        stored_schedule = reloaded.get_schedule(schedule.schedule_id)
        assert stored_schedule.notes == "front gate"
        assert stored_schedule.route_id == route.route_id
        assert stored_schedule.time_slot == window
        stored_route = reloaded.get_route(route.route_id)
        assert [s.bin_id for s in stored_route.ordered_stops] == [s.bin_id for s in route.ordered_stops]
        assert stored_route.version == route.version
        assert len(reloaded.list_schedules(status=ScheduleStatus.PENDING)) == 2

    def test_stale_write_rejected(self):
        blackboard = Blackboard(self.store)
        blackboard.register_bin(make_bin("b1", fill_level=10))

        # another process updates the row behind this blackboard's back
        other = Blackboard(self.store)
        other.load_from_store()
        other.register_bin(make_bin("b1", fill_level=50))

        with pytest.raises(ConflictError):
            blackboard.register_bin(make_bin("b1", fill_level=60))
        assert blackboard.get_bin("b1").fill_level == 10

    def test_duplicate_insert_rejected(self):
        Blackboard(self.store).register_bin(make_bin("b1"))
        with pytest.raises(ConflictError):
            Blackboard(self.store).register_bin(make_bin("b1"))

    def test_delete(self):
        blackboard = Blackboard(self.store)
        blackboard.register_bin(make_bin("b1"))
        blackboard.remove_bin("b1")
        assert self.store.load_all()["bin"] == []

