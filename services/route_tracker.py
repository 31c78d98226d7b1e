"""Route execution tracker: route lifecycle and per-stop completion."""
from typing import List, Optional

from loguru import logger

from core.blackboard import Blackboard, UnitOfWork
from core.exceptions import InvalidStateError, NotFoundError
from models.collection_models import (
    CompletionDetails,
    Route,
    RouteStatus,
    RouteStop,
    StopStatus,
    check_route_transition,
    utcnow,
)
from services.notification_service import ROUTE_COMPLETED
from services.schedule_service import ScheduleManager


class RouteExecutionTracker:
    """Drives a route from planned to completed or cancelled.

    Stop updates reconcile into schedule and bin state through the schedule
    manager, inside the same unit of work as the stop change, so a failed
    write-back leaves the route untouched.
    """

    def __init__(self, blackboard: Blackboard, schedules: ScheduleManager, notifier=None, clock=utcnow):
        self.blackboard = blackboard
        self.schedules = schedules
        self.notifier = notifier
        self.clock = clock

    def get_route(self, route_id: str) -> Route:
        route = self.blackboard.get_route(route_id)
        if route is None:
            raise NotFoundError(f"Route {route_id} not found")
        return route

    def list_routes(self, collector_id: Optional[str] = None,
                    status: Optional[RouteStatus] = None) -> List[Route]:
        return self.blackboard.list_routes(collector_id=collector_id, status=status)

    # ---- lifecycle ---------------------------------------------------------

    def start(self, route_id: str) -> Route:
        return self._move(route_id, RouteStatus.IN_PROGRESS, expected=RouteStatus.PLANNED)

    def pause(self, route_id: str) -> Route:
        return self._move(route_id, RouteStatus.PAUSED)

    def resume(self, route_id: str) -> Route:
        return self._move(route_id, RouteStatus.IN_PROGRESS, expected=RouteStatus.PAUSED)

    def complete(self, route_id: str) -> Route:
        return self._move(route_id, RouteStatus.COMPLETED)

    def cancel(self, route_id: str, reason: str = "") -> Route:
        return self._move(route_id, RouteStatus.CANCELLED, reason=reason)

    def update_status(self, route_id: str, status, reason: str = "") -> Route:
        """Generic transition used by the PATCH endpoint; accepts status aliases."""
        return self._move(route_id, RouteStatus.parse(status), reason=reason)

    def _move(self, route_id: str, target: RouteStatus, expected: Optional[RouteStatus] = None,
              reason: str = "") -> Route:
        with self.blackboard.unit_of_work("route_status", route_id=route_id, status=target.value) as uow:
            route = uow.require_route(route_id)
            if expected is not None and route.status is not expected:
                raise InvalidStateError(
                    f"Route {route_id} is '{route.status.value}', expected '{expected.value}'"
                )
            previous = route.status
            self._transition(uow, route, target, reason)
            uow.put(route)

        logger.info(f"Route {route_id}: {previous.value} -> {target.value}")
        return self.get_route(route_id)

    def _transition(self, uow: UnitOfWork, route: Route, target: RouteStatus, reason: str = "") -> None:
        check_route_transition(route.status, target)
        now = self.clock()

        if target is RouteStatus.IN_PROGRESS and route.started_at is None:
            route.started_at = now
        elif target is RouteStatus.COMPLETED:
            unresolved = route.pending_stops()
            if unresolved:
                raise InvalidStateError(
                    f"Route {route.route_id} still has {len(unresolved)} unresolved stops"
                )
            route.completed_at = now
            self._notify_completed(uow, route)
        elif target is RouteStatus.CANCELLED:
            route.cancel_reason = reason
            route.completed_at = now
            for stop in route.pending_stops():
                if stop.schedule_id:
                    self.schedules.release_from_route(stop.schedule_id, route.route_id, uow)

        route.status = target

    def _notify_completed(self, uow: UnitOfWork, route: Route) -> None:
        if self.notifier is None:
            return
        notifier = self.notifier
        uow.after_commit(lambda: notifier.notify(ROUTE_COMPLETED, {
            'route_id': route.route_id,
            'collector_id': route.collector_id,
            'collected': route.collected_count,
            'skipped': len(route.stops) - route.collected_count,
            'completed_at': route.completed_at.isoformat(),
        }))

    # ---- stops -------------------------------------------------------------

    def _open_stop(self, uow: UnitOfWork, route_id: str, bin_id: str):
        route = uow.require_route(route_id)
        if route.status is not RouteStatus.IN_PROGRESS:
            raise InvalidStateError(
                f"Stops can only be updated while route {route_id} is in progress "
                f"(status '{route.status.value}')"
            )
        stop = route.stop_for(bin_id)
        if stop is None:
            raise NotFoundError(f"Bin {bin_id} is not a stop on route {route_id}")
        if stop.is_resolved:
            raise InvalidStateError(f"Stop {bin_id} on route {route_id} is already {stop.status.value}")
        return route, stop

    def _linked_schedule(self, uow: UnitOfWork, route: Route, stop: RouteStop) -> Optional[str]:
        if not stop.schedule_id:
            logger.warning(f"Stop {stop.bin_id} on route {route.route_id} has no schedule")
            return None
        schedule = uow.get_schedule(stop.schedule_id)
        if schedule is None or not schedule.is_pending:
            logger.warning(
                f"Schedule {stop.schedule_id} for stop {stop.bin_id} is no longer pending; "
                f"updating the stop only"
            )
            return None
        return schedule.schedule_id

    def _finish_if_done(self, uow: UnitOfWork, route: Route) -> None:
        if route.completion_rate >= 1.0:
            self._transition(uow, route, RouteStatus.COMPLETED)
            logger.success(f"Route {route.route_id} completed ({route.collected_count}/{len(route.stops)} collected)")

    def mark_stop_collected(self, route_id: str, bin_id: str, notes: str = "",
                            actual_fill_level: float = 0.0,
                            collection_time: Optional[float] = None) -> Route:
        with self.blackboard.unit_of_work("stop_collected", route_id=route_id, bin_id=bin_id) as uow:
            route, stop = self._open_stop(uow, route_id, bin_id)
            now = self.clock()
            details = CompletionDetails(completed_at=now, actual_fill_level=actual_fill_level,
                                        collection_time=collection_time)

            stop.status = StopStatus.COLLECTED
            stop.collected_at = now
            stop.notes = notes

            schedule_id = self._linked_schedule(uow, route, stop)
            if schedule_id is not None:
                self.schedules.complete(schedule_id, details, uow=uow)

            self._finish_if_done(uow, route)
            uow.put(route)

        logger.info(f"Route {route_id}: collected bin {bin_id}")
        return self.get_route(route_id)

    def mark_stop_skipped(self, route_id: str, bin_id: str, reason: str = "") -> Route:
        with self.blackboard.unit_of_work("stop_skipped", route_id=route_id, bin_id=bin_id) as uow:
            route, stop = self._open_stop(uow, route_id, bin_id)
            stop.status = StopStatus.SKIPPED
            stop.skip_reason = reason

            schedule_id = self._linked_schedule(uow, route, stop)
            if schedule_id is not None:
                self.schedules.mark_missed(schedule_id, enforce_window=False, reason=reason, uow=uow)

            self._finish_if_done(uow, route)
            uow.put(route)

        logger.warning(f"Route {route_id}: skipped bin {bin_id} ({reason or 'no reason'})")
        return self.get_route(route_id)
