"""Scheduling agent: periodic sweep turning bin priorities into schedules."""
import asyncio
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from loguru import logger

from configurations.config import Config
from core.blackboard import Blackboard
from core.exceptions import NoCollectorAvailableError
from models.collection_models import Bin, BinStatus, utcnow
from models.serialization import schedule_to_dict
from scoring.priority_scorer import PriorityScorer, priority_tier, tier_rank
from services.collector_service import CollectorService
from services.notification_service import SCHEDULE_ESCALATED
from services.schedule_service import ScheduleManager

CREATED = "created"
ESCALATED = "escalated"
UNCHANGED = "unchanged"


@dataclass
class SweepReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    scanned: int = 0
    created: List[str] = field(default_factory=list)
    escalated: List[str] = field(default_factory=list)
    unchanged: int = 0
    failed: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'scanned': self.scanned,
            'created': list(self.created),
            'escalated': list(self.escalated),
            'unchanged': self.unchanged,
            'failed': dict(self.failed),
        }


class SchedulingAgent:
    """Scores every schedulable bin and keeps its pending schedule in step.

    A sweep creates a schedule for a bin over the threshold (or overflowing)
    that has none, and pulls an un-routed schedule forward when the bin's
    score has climbed into a higher tier. Only one sweep runs at a time; an
    overlapping request is skipped rather than queued.
    """

    def __init__(self, blackboard: Blackboard, scorer: PriorityScorer, schedules: ScheduleManager,
                 collectors: CollectorService, notifier=None,
                 threshold: int = Config.PRIORITY_THRESHOLD,
                 escalation_delta: int = Config.ESCALATION_DELTA,
                 window_minutes: int = Config.SWEEP_WINDOW_MINUTES,
                 clock=utcnow):
        self.blackboard = blackboard
        self.scorer = scorer
        self.schedules = schedules
        self.collectors = collectors
        self.notifier = notifier
        self.threshold = threshold
        self.escalation_delta = escalation_delta
        self.window = timedelta(minutes=window_minutes)
        self.clock = clock
        self.last_report: Optional[SweepReport] = None
        self._run_lock = threading.Lock()
        self._running = False

    @property
    def is_sweeping(self) -> bool:
        return self._run_lock.locked()

    def run_sweep(self) -> Optional[SweepReport]:
        if not self._run_lock.acquire(blocking=False):
            logger.warning("Sweep already running; skipping this one")
            return None

        try:
            report = SweepReport(started_at=self.clock())
            logger.info("Starting scheduling sweep")

            for bin_ in self.blackboard.list_bins():
                if not bin_.is_schedulable:
                    continue
                report.scanned += 1
                try:
                    outcome, schedule_id = self._sweep_bin(bin_)
                except Exception as e:
                    logger.error(f"Sweep failed for bin {bin_.bin_id}: {e}")
                    report.failed[bin_.bin_id] = f"{type(e).__name__}: {e}"
                    continue

                if outcome == CREATED:
                    report.created.append(schedule_id)
                elif outcome == ESCALATED:
                    report.escalated.append(schedule_id)
                else:
                    report.unchanged += 1

            report.finished_at = self.clock()
            self.last_report = report
            logger.success(
                f"Sweep done: {report.scanned} bins, {len(report.created)} created, "
                f"{len(report.escalated)} escalated, {len(report.failed)} failed"
            )
            return report
        finally:
            self._run_lock.release()

    def _sweep_bin(self, bin_: Bin):
        now = self.clock()
        score = self.scorer.score(bin_, now=now)
        pending = self.blackboard.pending_schedule_for(bin_.bin_id)

        if pending is None:
            if score <= self.threshold and bin_.status is not BinStatus.OVERFLOW:
                return UNCHANGED, None
            collector_id, window = self.collectors.next_available_window(bin_.zone, self.window, not_before=now)
            schedule = self.schedules.create_schedule(
                bin_.bin_id, collector_id, window, priority=score,
                notes=f"sweep: priority {score} ({priority_tier(score)})",
            )
            return CREATED, schedule.schedule_id

        # routed schedules move with their route
        if pending.route_id is not None:
            return UNCHANGED, None

        rose_tier = tier_rank(score) > tier_rank(pending.priority)
        jumped = score - pending.priority >= self.escalation_delta
        if not (rose_tier or jumped):
            return UNCHANGED, None

        duration = pending.time_slot.duration
        try:
            collector_id, window = self.collectors.next_available_window(
                pending.collector_id, duration, not_before=now
            )
        except NoCollectorAvailableError as e:
            logger.info(f"Collector {pending.collector_id} has no slot for bin {bin_.bin_id} ({e}); "
                        f"trying zone {bin_.zone}")
            collector_id, window = self.collectors.next_available_window(bin_.zone, duration, not_before=now)

        if window.start >= pending.time_slot.start:
            logger.info(
                f"Bin {bin_.bin_id} rose to priority {score} but no earlier slot than "
                f"{pending.time_slot.start.isoformat()} is free"
            )
            return UNCHANGED, None

        successor = self.schedules.reschedule(
            pending.schedule_id, window, priority=score,
            reason=f"escalated from priority {pending.priority} to {score}",
            collector_id=collector_id,
        )
        if self.notifier is not None:
            self.notifier.notify(SCHEDULE_ESCALATED, {
                'previous_priority': pending.priority,
                'schedule': schedule_to_dict(successor),
            })
        logger.warning(f"Escalated bin {bin_.bin_id}: {pending.schedule_id} -> {successor.schedule_id}")
        return ESCALATED, successor.schedule_id

    async def run_forever(self, interval_seconds: Optional[float] = None) -> None:
        interval = interval_seconds if interval_seconds is not None else Config.SWEEP_INTERVAL_SECONDS
        self._running = True
        logger.info(f"Scheduling agent started (every {interval}s)")

        while self._running:
            try:
                await asyncio.to_thread(self.run_sweep)
            except Exception as e:
                logger.error(f"Sweep crashed: {e}")
            await asyncio.sleep(interval)

    def stop(self) -> None:
        self._running = False
