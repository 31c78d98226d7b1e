"""Route planner: resolve bins, build a route and attach it to their schedules."""
from datetime import timedelta
from typing import Dict, List, Optional

from loguru import logger

from configurations.config import Config
from core.blackboard import Blackboard
from core.exceptions import DataConsistencyError, ValidationError
from models.collection_models import Bin, Location, Route, TimeWindow, utcnow
from routing.route_builder import RouteBuilder
from scoring.priority_scorer import PriorityScorer
from services.schedule_service import ScheduleManager


class RoutePlanner:
    def __init__(self, blackboard: Blackboard, builder: RouteBuilder, scorer: PriorityScorer,
                 schedules: ScheduleManager, slack_minutes: int = Config.ADHOC_WINDOW_SLACK_MINUTES,
                 clock=utcnow):
        self.blackboard = blackboard
        self.builder = builder
        self.scorer = scorer
        self.schedules = schedules
        self.slack = timedelta(minutes=slack_minutes)
        self.clock = clock

    def _resolve_bins(self, bin_ids: List[str]) -> List[Bin]:
        bins = []
        for bin_id in dict.fromkeys(bin_ids):
            bin_ = self.blackboard.get_bin(bin_id)
            if bin_ is None:
                raise DataConsistencyError(f"Bin {bin_id} does not exist")
            if not bin_.is_schedulable:
                raise DataConsistencyError(f"Bin {bin_id} is {bin_.status.value} and cannot be routed")
            bins.append(bin_)
        return bins

    def _priorities(self, bins: List[Bin]) -> Dict[str, int]:
        now = self.clock()
        priorities = {}
        for bin_ in bins:
            pending = self.blackboard.pending_schedule_for(bin_.bin_id)
            priorities[bin_.bin_id] = pending.priority if pending else self.scorer.score(bin_, now=now)
        return priorities

    def plan(self, bin_ids: List[str], start: Location, end: Location, collector_id: str,
             zone: Optional[str] = None, timeout: Optional[float] = None) -> Route:
        """Build and store a route; nothing is stored when the build fails."""
        if not bin_ids:
            raise ValidationError("A route needs bins")
        bins = self._resolve_bins(bin_ids)
        priorities = self._priorities(bins)
        route = self.builder.build_route(bins, start, end, collector_id, zone=zone,
                                         priorities=priorities, timeout=timeout)

        now = self.clock()
        adhoc_window = TimeWindow(now, now + timedelta(seconds=route.estimated_time) + self.slack)
        adhoc = 0

        with self.blackboard.unit_of_work("plan_route", route_id=route.route_id,
                                          collector_id=collector_id) as uow:
            for stop in route.stops:
                pending = uow.pending_schedule_for(stop.bin_id)
                if pending is None:
                    pending = self.schedules.create_schedule(
                        stop.bin_id, collector_id, adhoc_window,
                        priority=priorities[stop.bin_id],
                        notes=f"ad hoc for route {route.route_id}",
                        uow=uow,
                    )
                    adhoc += 1
                self.schedules.attach_to_route(pending.schedule_id, route.route_id, uow, collector_id=collector_id)
                stop.schedule_id = pending.schedule_id
            uow.put(route)

        logger.success(
            f"Planned route {route.route_id} for {collector_id}: {len(route.stops)} stops, "
            f"{adhoc} ad hoc schedules"
        )
        return self.blackboard.get_route(route.route_id)
