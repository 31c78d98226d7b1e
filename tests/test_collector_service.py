"""Tests for the collector directory."""
from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

from core.blackboard import Blackboard
from core.exceptions import NoCollectorAvailableError
from fakes import FixedClock, default_roster, make_bin
from models.collection_models import Schedule, TimeWindow, new_id
from services.collector_service import CollectorService, round_up


def test_round_up():
    base = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
    assert round_up(base, 15) == base
    assert round_up(base + timedelta(minutes=1), 15) == base + timedelta(minutes=15)
    assert round_up(base + timedelta(minutes=14, seconds=59), 15) == base + timedelta(minutes=15)


class TestCollectorService:
    def setup_method(self):
        self.clock = FixedClock()
        self.blackboard = Blackboard()
        self.service = CollectorService(self.blackboard, roster=default_roster(), clock=self.clock)
        self.hour = timedelta(hours=1)

    def book(self, collector_id, start, hours=1, bin_id="b1"):
        self.blackboard.register_bin(make_bin(bin_id))
        with self.blackboard.unit_of_work("book") as uow:
            uow.put(Schedule(new_id("sch"), bin_id, collector_id,
                             TimeWindow(start, start + timedelta(hours=hours)), priority=5))

    def test_roster_keeps_active_collectors(self):
        roster = self.service.get_roster()
        assert list(roster['collector_id']) == ['c1', 'c2']
        assert self.service.get_collectors_by_zone('south').empty

    def test_standardizes_api_style_columns(self):
        raw = pd.DataFrame([{'id': 7, 'ward': 'north', 'status': 'ONLINE'}])
        service = CollectorService(roster=raw, clock=self.clock)
        roster = service.get_roster()
        assert roster.iloc[0]['collector_id'] == '7'
        assert roster.iloc[0]['zone'] == 'north'
        assert roster.iloc[0]['shift_start'] == 6

    def test_collector_lookup(self):
        collector_id, window = self.service.next_available_window('c2', self.hour)
        assert collector_id == 'c2'
        assert window == TimeWindow(self.clock.now, self.clock.now + self.hour)

    def test_zone_lookup_prefers_earliest_then_id(self):
        self.book('c1', self.clock.now)
        collector_id, window = self.service.next_available_window('north', self.hour)
        assert collector_id == 'c2'
        assert window.start == self.clock.now

        self.book('c2', self.clock.now, bin_id="b2")
        collector_id, window = self.service.next_available_window('north', self.hour)
        assert collector_id == 'c1'
        assert window.start == self.clock.now + self.hour

    def test_window_rounded_and_inside_shift(self):
        self.clock.now = self.clock.now.replace(hour=17, minute=20)
        collector_id, window = self.service.next_available_window('c1', self.hour)
        # 17:30 + 1h would end after the 18:00 shift end
        assert window.start == self.clock.now.replace(hour=6, minute=0) + timedelta(days=1)

        self.clock.now = self.clock.now.replace(hour=9, minute=7)
        _, window = self.service.next_available_window('c1', self.hour)
        assert window.start == self.clock.now.replace(minute=15)

    def test_no_collector(self):
        with pytest.raises(NoCollectorAvailableError):
            self.service.next_available_window('east', self.hour)
        with pytest.raises(NoCollectorAvailableError):
            self.service.next_available_window('c1', timedelta(hours=20))

    def test_loads_roster_from_csv(self, tmp_path):
        path = tmp_path / "collectors.csv"
        default_roster().to_csv(path, index=False)
        service = CollectorService(csv_path=str(path), clock=self.clock)
        assert list(service.get_roster()['collector_id']) == ['c1', 'c2']

    def test_fetches_roster_from_api(self, monkeypatch):
        class Response:
            status_code = 200
            text = ""

            def json(self):
                return {'content': [{'collectorId': 'x1', 'area': 'north', 'status': 'ACTIVE'}]}

        calls = []
        monkeypatch.setattr("services.collector_service.requests.get",
                            lambda url, **kwargs: calls.append((url, kwargs)) or Response())
        service = CollectorService(csv_path="", base_url="http://directory.local/", token="secret",
                                   clock=self.clock)
        roster = service.get_roster()

        assert list(roster['collector_id']) == ['x1']
        url, kwargs = calls[0]
        assert url == "http://directory.local/api/collectors"
        assert kwargs['headers']['Authorization'] == "Bearer secret"
