"""Schedule manager: lifecycle of collection schedules and recurrence."""
import calendar
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Iterator, List, Optional

from loguru import logger

from core.blackboard import Blackboard, UnitOfWork
from core.exceptions import ConflictError, DataConsistencyError, InvalidStateError, NotFoundError, ValidationError
from models.collection_models import (
    Bin,
    BinStatus,
    CompletionDetails,
    Recurrence,
    Schedule,
    ScheduleStatus,
    TimeWindow,
    check_schedule_pending,
    new_id,
    successor_of,
    utcnow,
)
from models.serialization import schedule_to_dict
from scoring.priority_scorer import PriorityScorer
from services.notification_service import SCHEDULE_CANCELED, SCHEDULE_CREATED, SCHEDULE_RESCHEDULED


def add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def shift_window(window: TimeWindow, recurrence: Recurrence, steps: int) -> TimeWindow:
    if recurrence is Recurrence.DAILY:
        return window.shifted(timedelta(days=steps))
    if recurrence is Recurrence.WEEKLY:
        return window.shifted(timedelta(weeks=steps))
    if recurrence is Recurrence.MONTHLY:
        start = add_months(window.start, steps)
        return TimeWindow(start, start + window.duration)
    raise ValueError(f"Schedule does not recur: {recurrence.value}")


def next_occurrence(window: TimeWindow, recurrence: Recurrence, now: datetime) -> TimeWindow:
    """First recurrence of `window` that has not already ended at `now`."""
    steps = 1
    candidate = shift_window(window, recurrence, steps)
    while candidate.end <= now:
        steps += 1
        candidate = shift_window(window, recurrence, steps)
    return candidate


class ScheduleManager:
    """Owns schedule state transitions.

    Every mutating call runs inside a blackboard unit of work. Callers that
    need several entities to change together (the route tracker) pass their
    own unit of work through ``uow``; otherwise one is opened per call.
    Notifications go out only after the work commits.
    """

    def __init__(self, blackboard: Blackboard, scorer: PriorityScorer, notifier=None, clock=utcnow):
        self.blackboard = blackboard
        self.scorer = scorer
        self.notifier = notifier
        self.clock = clock

    @contextmanager
    def _work(self, action: str, uow: Optional[UnitOfWork], **data) -> Iterator[UnitOfWork]:
        if uow is not None:
            yield uow
        else:
            with self.blackboard.unit_of_work(action, **data) as own:
                yield own

    def _committed(self, schedule: Schedule, uow: Optional[UnitOfWork]) -> Schedule:
        if uow is not None:
            return schedule
        return self.blackboard.get_schedule(schedule.schedule_id) or schedule

    def _notify_after(self, uow: UnitOfWork, event: str, payload: dict) -> None:
        if self.notifier is None:
            return
        notifier = self.notifier
        uow.after_commit(lambda: notifier.notify(event, payload))

    def _require_bin(self, uow: UnitOfWork, schedule: Schedule) -> Bin:
        bin_ = uow.get_bin(schedule.bin_id)
        if bin_ is None:
            raise DataConsistencyError(
                f"Schedule {schedule.schedule_id} references bin {schedule.bin_id}, which no longer exists"
            )
        return bin_

    def _check_not_routed(self, uow: UnitOfWork, schedule: Schedule, action: str) -> None:
        if schedule.route_id is None:
            return
        route = uow.get_route(schedule.route_id)
        if route is not None and not route.status.is_terminal:
            raise InvalidStateError(
                f"Cannot {action} schedule {schedule.schedule_id}: it is on route {schedule.route_id} "
                f"({route.status.value}); cancel the route first"
            )

    # ---- queries -----------------------------------------------------------

    def get_schedule(self, schedule_id: str) -> Schedule:
        schedule = self.blackboard.get_schedule(schedule_id)
        if schedule is None:
            raise NotFoundError(f"Schedule {schedule_id} not found")
        return schedule

    def list_schedules(self, bin_id: Optional[str] = None, collector_id: Optional[str] = None,
                       status: Optional[ScheduleStatus] = None) -> List[Schedule]:
        return self.blackboard.list_schedules(bin_id=bin_id, collector_id=collector_id, status=status)

    # ---- operations --------------------------------------------------------

    def create_schedule(self, bin_id: str, collector_id: str, window: TimeWindow,
                        priority: Optional[int] = None, recurrence: Recurrence = Recurrence.NONE,
                        recurrence_end_date: Optional[date] = None, notes: str = "",
                        supersede: bool = False, uow: Optional[UnitOfWork] = None) -> Schedule:
        """Create a pending schedule; with ``supersede`` an existing pending one becomes rescheduled."""
        recurrence = Recurrence(recurrence)
        if recurrence_end_date is not None and recurrence_end_date < window.start.date():
            raise ValidationError("Recurrence end date is before the first occurrence")

        with self._work("create_schedule", uow, bin_id=bin_id) as work:
            bin_ = work.get_bin(bin_id)
            if bin_ is None:
                raise DataConsistencyError(f"Bin {bin_id} does not exist")
            if not bin_.is_schedulable:
                raise DataConsistencyError(f"Bin {bin_id} is {bin_.status.value} and cannot be scheduled")

            existing = work.pending_schedule_for(bin_id)
            if existing is not None:
                if not supersede:
                    raise ConflictError(f"Bin {bin_id} already has pending schedule {existing.schedule_id}")
                self._check_not_routed(work, existing, "supersede")
                existing.status = ScheduleStatus.RESCHEDULED
                existing.status_reason = "superseded"
                work.put(existing)

            now = self.clock()
            if priority is None:
                priority = self.scorer.score(bin_, now=now)

            schedule = Schedule(
                schedule_id=new_id("sch"),
                bin_id=bin_id,
                collector_id=collector_id,
                time_slot=window,
                priority=priority,
                recurrence=recurrence,
                recurrence_end_date=recurrence_end_date,
                notes=notes,
                previous_schedule_id=existing.schedule_id if existing is not None else None,
                created_at=now,
            )
            work.put(schedule)
            self._notify_after(work, SCHEDULE_CREATED, schedule_to_dict(schedule))

        logger.info(
            f"Created schedule {schedule.schedule_id} for bin {bin_id} "
            f"(collector {collector_id}, priority {schedule.priority}, {recurrence.value})"
        )
        return self._committed(schedule, uow)

    def reschedule(self, schedule_id: str, new_window: TimeWindow, priority: Optional[int] = None,
                   reason: str = "", collector_id: Optional[str] = None,
                   uow: Optional[UnitOfWork] = None) -> Schedule:
        """Retire a pending schedule and return its successor in ``new_window``.

        ``collector_id`` hands the successor to another collector.
        """
        with self._work("reschedule", uow, schedule_id=schedule_id) as work:
            old = work.require_schedule(schedule_id)
            check_schedule_pending(old, "reschedule")
            self._check_not_routed(work, old, "reschedule")
            self._require_bin(work, old)

            old.status = ScheduleStatus.RESCHEDULED
            old.status_reason = reason or "rescheduled"
            work.put(old)

            successor = successor_of(old, new_window,
                                     priority if priority is not None else old.priority, self.clock())
            if collector_id is not None:
                successor.collector_id = collector_id
            work.put(successor)
            self._notify_after(work, SCHEDULE_RESCHEDULED, {
                'previous_schedule_id': old.schedule_id,
                'schedule': schedule_to_dict(successor),
            })

        logger.info(f"Rescheduled {schedule_id} -> {successor.schedule_id} starting {new_window.start.isoformat()}")
        return self._committed(successor, uow)

    def cancel(self, schedule_id: str, reason: str = "", uow: Optional[UnitOfWork] = None) -> Schedule:
        with self._work("cancel_schedule", uow, schedule_id=schedule_id) as work:
            schedule = work.require_schedule(schedule_id)
            check_schedule_pending(schedule, "cancel")
            self._check_not_routed(work, schedule, "cancel")

            schedule.status = ScheduleStatus.CANCELED
            schedule.status_reason = reason
            work.put(schedule)
            self._spawn_next(work, schedule)
            self._notify_after(work, SCHEDULE_CANCELED, schedule_to_dict(schedule))

        logger.info(f"Canceled schedule {schedule_id}: {reason or 'no reason given'}")
        return self._committed(schedule, uow)

    def complete(self, schedule_id: str, details: CompletionDetails,
                 uow: Optional[UnitOfWork] = None) -> Schedule:
        """Mark collected and write the collection back onto the bin."""
        with self._work("complete_schedule", uow, schedule_id=schedule_id) as work:
            schedule = work.require_schedule(schedule_id)
            check_schedule_pending(schedule, "complete")
            bin_ = self._require_bin(work, schedule)

            schedule.status = ScheduleStatus.COMPLETED
            schedule.completion_details = details
            work.put(schedule)

            bin_.last_collected_at = details.completed_at
            bin_.fill_level = details.actual_fill_level
            bin_.missed_count = 0
            bin_.escalated = False
            if bin_.status is BinStatus.OVERFLOW:
                bin_.status = BinStatus.ACTIVE
            work.put(bin_)

            self._spawn_next(work, schedule)

        logger.info(f"Completed schedule {schedule_id}; bin {schedule.bin_id} reset to {details.actual_fill_level}%")
        return self._committed(schedule, uow)

    def mark_missed(self, schedule_id: str, enforce_window: bool = True, reason: str = "",
                    uow: Optional[UnitOfWork] = None) -> Schedule:
        """Record a missed collection; by default only once the time slot has ended."""
        with self._work("mark_missed", uow, schedule_id=schedule_id) as work:
            schedule = work.require_schedule(schedule_id)
            check_schedule_pending(schedule, "mark missed")
            if enforce_window and schedule.time_slot.end > self.clock():
                raise InvalidStateError(
                    f"Schedule {schedule_id} cannot be missed before its window ends "
                    f"({schedule.time_slot.end.isoformat()})"
                )
            bin_ = self._require_bin(work, schedule)

            schedule.status = ScheduleStatus.MISSED
            schedule.status_reason = reason
            work.put(schedule)

            bin_.missed_count += 1
            work.put(bin_)

            self._spawn_next(work, schedule)

        logger.warning(f"Schedule {schedule_id} missed (bin {schedule.bin_id}, missed count {bin_.missed_count})")
        return self._committed(schedule, uow)

    # ---- route linkage -----------------------------------------------------

    def attach_to_route(self, schedule_id: str, route_id: str, uow: UnitOfWork,
                        collector_id: Optional[str] = None) -> Schedule:
        """Link a pending schedule to a route, handing it to the route's collector."""
        schedule = uow.require_schedule(schedule_id)
        check_schedule_pending(schedule, "route")
        if schedule.route_id is not None and schedule.route_id != route_id:
            current = uow.get_route(schedule.route_id)
            if current is not None and not current.status.is_terminal:
                raise ConflictError(
                    f"Schedule {schedule_id} for bin {schedule.bin_id} is already on route {schedule.route_id}"
                )
        schedule.route_id = route_id
        if collector_id is not None and schedule.collector_id != collector_id:
            logger.info(f"Schedule {schedule_id} moves from {schedule.collector_id} to {collector_id} "
                        f"with route {route_id}")
            schedule.collector_id = collector_id
        uow.put(schedule)
        return schedule

    def release_from_route(self, schedule_id: str, route_id: str, uow: UnitOfWork) -> Optional[Schedule]:
        """Detach a still-pending schedule from a route so it can be routed again."""
        schedule = uow.get_schedule(schedule_id)
        if schedule is None or not schedule.is_pending or schedule.route_id != route_id:
            return None
        schedule.route_id = None
        uow.put(schedule)
        return schedule

    # ---- recurrence --------------------------------------------------------

    def _spawn_next(self, uow: UnitOfWork, schedule: Schedule) -> Optional[Schedule]:
        if schedule.recurrence is Recurrence.NONE:
            return None

        now = self.clock()
        window = next_occurrence(schedule.time_slot, schedule.recurrence, now)
        if schedule.recurrence_end_date is not None and window.start.date() > schedule.recurrence_end_date:
            logger.info(f"Recurrence of {schedule.schedule_id} ended on {schedule.recurrence_end_date}")
            return None

        bin_ = uow.get_bin(schedule.bin_id)
        if bin_ is None or not bin_.is_schedulable:
            logger.warning(f"Not recurring {schedule.schedule_id}: bin {schedule.bin_id} is missing or not schedulable")
            return None
        other = uow.pending_schedule_for(schedule.bin_id)
        if other is not None:
            logger.info(f"Not recurring {schedule.schedule_id}: bin {schedule.bin_id} already has {other.schedule_id}")
            return None

        nxt = successor_of(schedule, window, self.scorer.score(bin_, now=now), now)
        uow.put(nxt)
        self._notify_after(uow, SCHEDULE_CREATED, schedule_to_dict(nxt))
        logger.info(f"Next {schedule.recurrence.value} occurrence {nxt.schedule_id} on {nxt.scheduled_date}")
        return nxt
