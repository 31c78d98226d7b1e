"""Tests for schedule lifecycle and recurrence."""
from datetime import date, timedelta

import pytest

from core.blackboard import Blackboard
from core.exceptions import ConflictError, DataConsistencyError, InvalidStateError, NotFoundError
from fakes import FixedClock, RecordingNotifier, make_bin
from models.collection_models import (
    BinStatus,
    CompletionDetails,
    Recurrence,
    ScheduleStatus,
    TimeWindow,
)
from scoring.priority_scorer import PriorityScorer
from services.schedule_service import ScheduleManager, add_months, next_occurrence


class TestScheduleManager:
    def setup_method(self):
        self.clock = FixedClock()
        self.blackboard = Blackboard()
        self.notifier = RecordingNotifier()
        self.manager = ScheduleManager(self.blackboard, PriorityScorer(clock=self.clock),
                                       self.notifier, clock=self.clock)
        self.blackboard.register_bin(make_bin("b1", fill_level=85, last_collected_at=self.clock.now))
        self.window = TimeWindow(self.clock.now + timedelta(hours=1), self.clock.now + timedelta(hours=2))

    def pending_count(self, bin_id="b1"):
        return len(self.blackboard.list_schedules(bin_id=bin_id, status=ScheduleStatus.PENDING))

    def test_create_derives_priority(self):
        schedule = self.manager.create_schedule("b1", "c1", self.window)
        assert schedule.status is ScheduleStatus.PENDING
        assert schedule.priority == 8
        assert schedule.version == 1
        assert schedule.scheduled_date == self.window.start.date()
        assert self.notifier.names() == ["schedule_created"]

    def test_second_pending_schedule_conflicts(self):
        self.manager.create_schedule("b1", "c1", self.window)
        with pytest.raises(ConflictError):
            self.manager.create_schedule("b1", "c2", self.window.shifted(timedelta(days=1)))
        assert self.pending_count() == 1

    def test_supersede_replaces_pending(self):
        old = self.manager.create_schedule("b1", "c1", self.window)
        new = self.manager.create_schedule("b1", "c2", self.window, supersede=True)

        assert self.manager.get_schedule(old.schedule_id).status is ScheduleStatus.RESCHEDULED
        assert new.previous_schedule_id == old.schedule_id
        assert self.pending_count() == 1

    def test_missing_or_inactive_bin(self):
        with pytest.raises(DataConsistencyError):
            self.manager.create_schedule("ghost", "c1", self.window)

        self.blackboard.register_bin(make_bin("b2", status=BinStatus.MAINTENANCE))
        with pytest.raises(DataConsistencyError):
            self.manager.create_schedule("b2", "c1", self.window)

    def test_reschedule(self):
        old = self.manager.create_schedule("b1", "c1", self.window, priority=5)
        later = self.window.shifted(timedelta(days=1))
        successor = self.manager.reschedule(old.schedule_id, later, reason="truck down")

        retired = self.manager.get_schedule(old.schedule_id)
        assert retired.status is ScheduleStatus.RESCHEDULED
        assert retired.status_reason == "truck down"
        assert successor.time_slot == later
        assert successor.priority == 5
        assert successor.collector_id == "c1"
        assert successor.previous_schedule_id == old.schedule_id
        assert self.pending_count() == 1

        with pytest.raises(InvalidStateError):
            self.manager.reschedule(old.schedule_id, later)

    def test_cancel_is_terminal(self):
        schedule = self.manager.create_schedule("b1", "c1", self.window)
        canceled = self.manager.cancel(schedule.schedule_id, "resident request")
        assert canceled.status is ScheduleStatus.CANCELED
        assert self.pending_count() == 0

        with pytest.raises(InvalidStateError):
            self.manager.complete(schedule.schedule_id, CompletionDetails(self.clock.now))

    def test_complete_writes_back_to_bin(self):
        self.blackboard.register_bin(make_bin("b2", fill_level=30, status=BinStatus.OVERFLOW, missed_count=2))
        schedule = self.manager.create_schedule("b2", "c1", self.window)
        self.clock.advance(hours=1)
        self.manager.complete(schedule.schedule_id, CompletionDetails(self.clock.now, actual_fill_level=5))

        bin_ = self.blackboard.get_bin("b2")
        assert bin_.fill_level == 5
        assert bin_.last_collected_at == self.clock.now
        assert bin_.missed_count == 0
        assert bin_.status is BinStatus.ACTIVE
        stored = self.manager.get_schedule(schedule.schedule_id)
        assert stored.status is ScheduleStatus.COMPLETED
        assert stored.completion_details.actual_fill_level == 5

    def test_complete_with_missing_bin(self):
        schedule = self.manager.create_schedule("b1", "c1", self.window)
        self.blackboard.remove_bin("b1")
        with pytest.raises(DataConsistencyError):
            self.manager.complete(schedule.schedule_id, CompletionDetails(self.clock.now))
        assert self.manager.get_schedule(schedule.schedule_id).status is ScheduleStatus.PENDING

    def test_mark_missed_waits_for_window_end(self):
        schedule = self.manager.create_schedule("b1", "c1", self.window)
        with pytest.raises(InvalidStateError):
            self.manager.mark_missed(schedule.schedule_id)

        self.clock.advance(hours=3)
        missed = self.manager.mark_missed(schedule.schedule_id)
        assert missed.status is ScheduleStatus.MISSED
        assert self.blackboard.get_bin("b1").missed_count == 1

    def test_recurring_schedule_spawns_next_occurrence(self):
        schedule = self.manager.create_schedule("b1", "c1", self.window, recurrence=Recurrence.WEEKLY)
        self.manager.complete(schedule.schedule_id, CompletionDetails(self.clock.now, actual_fill_level=0))

        pending = self.blackboard.list_schedules(bin_id="b1", status=ScheduleStatus.PENDING)
        assert len(pending) == 1
        nxt = pending[0]
        assert nxt.time_slot == self.window.shifted(timedelta(weeks=1))
        assert nxt.recurrence is Recurrence.WEEKLY
        assert nxt.previous_schedule_id == schedule.schedule_id
        assert nxt.priority == 1

    def test_recurrence_stops_after_end_date(self):
        schedule = self.manager.create_schedule("b1", "c1", self.window, recurrence=Recurrence.DAILY,
                                                recurrence_end_date=self.window.start.date())
        self.manager.cancel(schedule.schedule_id, "done")
        assert self.pending_count() == 0

    def test_cancel_recurring_spawns_next(self):
        schedule = self.manager.create_schedule("b1", "c1", self.window, recurrence=Recurrence.DAILY)
        self.manager.cancel(schedule.schedule_id, "holiday")
        pending = self.blackboard.list_schedules(bin_id="b1", status=ScheduleStatus.PENDING)
        assert [s.time_slot for s in pending] == [self.window.shifted(timedelta(days=1))]

    def test_single_pending_after_operation_sequence(self):
        s1 = self.manager.create_schedule("b1", "c1", self.window, recurrence=Recurrence.DAILY)
        s2 = self.manager.reschedule(s1.schedule_id, self.window.shifted(timedelta(hours=3)))
        s3 = self.manager.create_schedule("b1", "c2", self.window, supersede=True)
        self.manager.complete(s3.schedule_id, CompletionDetails(self.clock.now))
        for schedule in self.blackboard.list_schedules(bin_id="b1", status=ScheduleStatus.PENDING):
            self.manager.cancel(schedule.schedule_id, "cleanup")
        assert self.pending_count() <= 1
        assert self.manager.get_schedule(s2.schedule_id).status is ScheduleStatus.RESCHEDULED

    def test_unknown_schedule(self):
        with pytest.raises(NotFoundError):
            self.manager.get_schedule("nope")
        with pytest.raises(NotFoundError):
            self.manager.cancel("nope", "x")


def test_add_months_clamps_day():
    window_start = FixedClock().now.replace(month=1, day=31)
    assert add_months(window_start, 1).date() == date(2026, 2, 28)
    assert add_months(window_start, 3).date() == date(2026, 4, 30)


def test_next_occurrence_skips_past_windows():
    now = FixedClock().now
    window = TimeWindow(now - timedelta(days=10), now - timedelta(days=10) + timedelta(hours=1))
    nxt = next_occurrence(window, Recurrence.WEEKLY, now)
    assert nxt.start == window.start + timedelta(weeks=2)
    assert nxt.end > now
