"""Blackboard: shared registry of bins, schedules and routes with atomic units of work."""
import copy
import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple

from core.exceptions import ConflictError, NotFoundError, ValidationError
from models.blackboard_entry import BlackboardEntry, COMMITTED, FAILED, PENDING
from models.collection_models import Bin, Route, RouteStatus, Schedule, ScheduleStatus, utcnow

logger = logging.getLogger(__name__)

BIN = "bin"
SCHEDULE = "schedule"
ROUTE = "route"

JOURNAL_LIMIT = 1000


def entity_key(entity) -> Tuple[str, str]:
    if isinstance(entity, Bin):
        return BIN, entity.bin_id
    if isinstance(entity, Schedule):
        return SCHEDULE, entity.schedule_id
    if isinstance(entity, Route):
        return ROUTE, entity.route_id
    raise TypeError(f"Unsupported entity type: {type(entity).__name__}")


class UnitOfWork:
    """Staged writes that the blackboard applies all at once, or not at all."""

    def __init__(self, blackboard: "Blackboard", entry: BlackboardEntry):
        self._blackboard = blackboard
        self.entry = entry
        self._staged: Dict[Tuple[str, str], object] = {}
        self._after_commit: List[Callable[[], None]] = []

    @property
    def staged(self) -> Dict[Tuple[str, str], object]:
        return self._staged

    def put(self, entity) -> None:
        self._staged[entity_key(entity)] = copy.deepcopy(entity)

    def after_commit(self, callback: Callable[[], None]) -> None:
        """Run callback once the work is committed (never on rollback)."""
        self._after_commit.append(callback)

    def _get(self, kind: str, entity_id: str):
        staged = self._staged.get((kind, entity_id))
        if staged is not None:
            return copy.deepcopy(staged)
        return self._blackboard._read(kind, entity_id)

    def get_bin(self, bin_id: str) -> Optional[Bin]:
        return self._get(BIN, bin_id)

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        return self._get(SCHEDULE, schedule_id)

    def get_route(self, route_id: str) -> Optional[Route]:
        return self._get(ROUTE, route_id)

    def require_schedule(self, schedule_id: str) -> Schedule:
        schedule = self.get_schedule(schedule_id)
        if schedule is None:
            raise NotFoundError(f"Schedule {schedule_id} not found")
        return schedule

    def require_route(self, route_id: str) -> Route:
        route = self.get_route(route_id)
        if route is None:
            raise NotFoundError(f"Route {route_id} not found")
        return route

    def schedules_for_bin(self, bin_id: str) -> List[Schedule]:
        merged = {s.schedule_id: s for s in self._blackboard.list_schedules(bin_id=bin_id)}
        for (kind, entity_id), entity in self._staged.items():
            if kind == SCHEDULE and entity.bin_id == bin_id:
                merged[entity_id] = copy.deepcopy(entity)
        return list(merged.values())

    def pending_schedule_for(self, bin_id: str) -> Optional[Schedule]:
        pending = [s for s in self.schedules_for_bin(bin_id) if s.is_pending]
        if not pending:
            return None
        return min(pending, key=lambda s: (s.time_slot.start, s.schedule_id))


class Blackboard:
    def __init__(self, store=None):
        self._bins: Dict[str, Bin] = {}
        self._schedules: Dict[str, Schedule] = {}
        self._routes: Dict[str, Route] = {}
        self._schedules_by_bin: Dict[str, Set[str]] = {}
        self._entries: List[BlackboardEntry] = []
        self._lock = threading.RLock()
        self._store = store

    def _table(self, kind: str) -> Dict[str, object]:
        return {BIN: self._bins, SCHEDULE: self._schedules, ROUTE: self._routes}[kind]

    def _read(self, kind: str, entity_id: str):
        with self._lock:
            entity = self._table(kind).get(entity_id)
            return copy.deepcopy(entity) if entity is not None else None

    def load_from_store(self) -> None:
        """Hydrate the registry from the persistent store."""
        if self._store is None:
            return
        loaded = self._store.load_all()
        with self._lock:
            self._bins = {b.bin_id: b for b in loaded[BIN]}
            self._schedules = {s.schedule_id: s for s in loaded[SCHEDULE]}
            self._routes = {r.route_id: r for r in loaded[ROUTE]}
            self._schedules_by_bin = {}
            for schedule in self._schedules.values():
                self._schedules_by_bin.setdefault(schedule.bin_id, set()).add(schedule.schedule_id)
        logger.info(
            f"Loaded {len(self._bins)} bins, {len(self._schedules)} schedules "
            f"and {len(self._routes)} routes from store"
        )

    # ---- reads -------------------------------------------------------------

    def get_bin(self, bin_id: str) -> Optional[Bin]:
        return self._read(BIN, bin_id)

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        return self._read(SCHEDULE, schedule_id)

    def get_route(self, route_id: str) -> Optional[Route]:
        return self._read(ROUTE, route_id)

    def list_bins(self) -> List[Bin]:
        with self._lock:
            return [copy.deepcopy(b) for _, b in sorted(self._bins.items())]

    def list_schedules(self, bin_id: Optional[str] = None, collector_id: Optional[str] = None,
                       status: Optional[ScheduleStatus] = None) -> List[Schedule]:
        with self._lock:
            if bin_id is not None:
                ids = self._schedules_by_bin.get(bin_id, set())
                candidates = [self._schedules[i] for i in ids]
            else:
                candidates = list(self._schedules.values())
            result = [
                copy.deepcopy(s) for s in candidates
                if (collector_id is None or s.collector_id == collector_id)
                and (status is None or s.status is status)
            ]
        return sorted(result, key=lambda s: (s.time_slot.start, s.schedule_id))

    def list_routes(self, collector_id: Optional[str] = None,
                    status: Optional[RouteStatus] = None) -> List[Route]:
        with self._lock:
            result = [
                copy.deepcopy(r) for r in self._routes.values()
                if (collector_id is None or r.collector_id == collector_id)
                and (status is None or r.status is status)
            ]
        return sorted(result, key=lambda r: r.route_id)

    def pending_schedule_for(self, bin_id: str) -> Optional[Schedule]:
        pending = self.list_schedules(bin_id=bin_id, status=ScheduleStatus.PENDING)
        return pending[0] if pending else None

    # ---- bin registry sync -------------------------------------------------

    def register_bin(self, bin_: Bin) -> Bin:
        """Insert or update a bin as reported by the bin registry.

        The registry owns fill level, status, location, waste type and zone.
        Missed count and escalation are engine state and survive a sync; a
        missing or older collection time keeps the stored one.
        """
        with self.unit_of_work("register_bin", bin_id=bin_.bin_id) as uow:
            existing = uow.get_bin(bin_.bin_id)
            incoming = copy.deepcopy(bin_)
            if existing is not None:
                stored_at = existing.last_collected_at
                collected = incoming.last_collected_at is not None and (
                    stored_at is None or incoming.last_collected_at > stored_at
                )
                if not collected:
                    incoming.last_collected_at = stored_at
                if incoming.fill_level < existing.fill_level and not collected:
                    raise ValidationError(
                        f"Fill level of bin {bin_.bin_id} cannot drop from "
                        f"{existing.fill_level} to {incoming.fill_level} without a collection"
                    )
                incoming.missed_count = existing.missed_count
                incoming.escalated = existing.escalated or incoming.escalated
                incoming.version = existing.version
            else:
                incoming.version = 0
            uow.put(incoming)
        return self.get_bin(bin_.bin_id)

    def remove_bin(self, bin_id: str) -> None:
        """Drop a bin; schedules and routes keep their weak references to it."""
        with self._lock:
            if bin_id not in self._bins:
                raise NotFoundError(f"Bin {bin_id} not found")
            if self._store is not None:
                self._store.delete(BIN, bin_id)
            del self._bins[bin_id]
        logger.info(f"Removed bin {bin_id} from registry")

    # ---- units of work -----------------------------------------------------

    @contextmanager
    def unit_of_work(self, action: str, **data) -> Iterator[UnitOfWork]:
        entry = BlackboardEntry(
            entry_id=f"uow_{uuid.uuid4().hex[:12]}",
            entry_type=action,
            data=data,
            timestamp=utcnow(),
        )
        with self._lock:
            self._entries.append(entry)
            self._trim_journal()

        uow = UnitOfWork(self, entry)
        try:
            yield uow
            self._commit(uow)
        except Exception as e:
            entry.status = FAILED
            entry.error = f"{type(e).__name__}: {e}"
            entry.finished_at = utcnow()
            raise

        entry.status = COMMITTED
        entry.finished_at = utcnow()
        for callback in uow._after_commit:
            try:
                callback()
            except Exception as e:
                logger.error(f"Post-commit hook for {action} failed: {e}")

    def _commit(self, uow: UnitOfWork) -> None:
        if not uow.staged:
            return
        with self._lock:
            for (kind, entity_id), entity in uow.staged.items():
                current = self._table(kind).get(entity_id)
                if current is None and entity.version != 0:
                    raise ConflictError(f"{kind} {entity_id} was removed concurrently")
                if current is not None and current.version != entity.version:
                    raise ConflictError(
                        f"{kind} {entity_id} was modified concurrently "
                        f"(expected version {entity.version}, found {current.version})"
                    )
            self._check_single_pending(uow)

            now = utcnow()
            writes = []
            for (kind, entity_id), entity in uow.staged.items():
                stored = copy.deepcopy(entity)
                stored.version = entity.version + 1
                stored.updated_at = now
                writes.append((kind, stored, entity.version))

            if self._store is not None:
                self._store.save_all(writes)

            for kind, stored, _ in writes:
                _, entity_id = entity_key(stored)
                self._table(kind)[entity_id] = stored
                if kind == SCHEDULE:
                    self._schedules_by_bin.setdefault(stored.bin_id, set()).add(entity_id)
                uow.entry.touched.append(f"{kind}:{entity_id}")

    def _check_single_pending(self, uow: UnitOfWork) -> None:
        bins = {
            entity.bin_id for (kind, _), entity in uow.staged.items()
            if kind == SCHEDULE and entity.is_pending
        }
        for bin_id in bins:
            merged = {
                sid: self._schedules[sid] for sid in self._schedules_by_bin.get(bin_id, set())
            }
            for (kind, entity_id), entity in uow.staged.items():
                if kind == SCHEDULE and entity.bin_id == bin_id:
                    merged[entity_id] = entity
            pending = [sid for sid, s in merged.items() if s.is_pending]
            if len(pending) > 1:
                raise ConflictError(f"Bin {bin_id} already has a pending schedule")

    # ---- journal -----------------------------------------------------------

    def _trim_journal(self) -> None:
        if len(self._entries) <= JOURNAL_LIMIT:
            return
        overflow = len(self._entries) - JOURNAL_LIMIT
        kept = []
        for entry in self._entries:
            if overflow > 0 and entry.status != PENDING:
                overflow -= 1
                continue
            kept.append(entry)
        self._entries = kept

    def journal(self) -> List[BlackboardEntry]:
        with self._lock:
            return list(self._entries)

    def incomplete_entries(self) -> List[BlackboardEntry]:
        """Units of work that started but never committed or failed."""
        with self._lock:
            return [e for e in self._entries if e.status == PENDING]
