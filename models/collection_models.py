"""Domain models for bins, collection schedules and routes."""
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from core.exceptions import InvalidStateError, ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class BinStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"
    OVERFLOW = "overflow"


SCHEDULABLE_BIN_STATUSES: FrozenSet[BinStatus] = frozenset({BinStatus.ACTIVE, BinStatus.OVERFLOW})


class ScheduleStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    MISSED = "missed"
    RESCHEDULED = "rescheduled"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self is not ScheduleStatus.PENDING


class Recurrence(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class StopStatus(str, Enum):
    PENDING = "pending"
    COLLECTED = "collected"
    SKIPPED = "skipped"


class RouteStatus(str, Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RouteStatus.COMPLETED, RouteStatus.CANCELLED)

    @classmethod
    def parse(cls, value) -> "RouteStatus":
        """Accept the spellings older clients send ("in-progress", "pending", "canceled")."""
        if isinstance(value, RouteStatus):
            return value
        raw = str(value).strip().lower()
        aliases = {
            "pending": "planned",
            "in-progress": "in_progress",
            "inprogress": "in_progress",
            "canceled": "cancelled",
        }
        raw = aliases.get(raw, raw)
        try:
            return cls(raw)
        except ValueError:
            raise ValidationError(f"Unknown route status '{value}'")


ROUTE_TRANSITIONS: Dict[RouteStatus, FrozenSet[RouteStatus]] = {
    RouteStatus.PLANNED: frozenset({RouteStatus.IN_PROGRESS, RouteStatus.CANCELLED}),
    RouteStatus.IN_PROGRESS: frozenset({RouteStatus.PAUSED, RouteStatus.COMPLETED, RouteStatus.CANCELLED}),
    RouteStatus.PAUSED: frozenset({RouteStatus.IN_PROGRESS, RouteStatus.CANCELLED}),
    RouteStatus.COMPLETED: frozenset(),
    RouteStatus.CANCELLED: frozenset(),
}


def check_route_transition(current: RouteStatus, target: RouteStatus) -> None:
    if target not in ROUTE_TRANSITIONS[current]:
        raise InvalidStateError(f"Route cannot move from '{current.value}' to '{target.value}'")


def check_schedule_pending(schedule: "Schedule", action: str) -> None:
    if schedule.status is not ScheduleStatus.PENDING:
        raise InvalidStateError(
            f"Cannot {action} schedule {schedule.schedule_id}: status is '{schedule.status.value}'"
        )


@dataclass(frozen=True)
class Location:
    lon: float
    lat: float

    def __post_init__(self):
        if not -180.0 <= self.lon <= 180.0 or not -90.0 <= self.lat <= 90.0:
            raise ValidationError(f"Invalid coordinates ({self.lon}, {self.lat})")

    def as_tuple(self):
        return (self.lon, self.lat)


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    def __post_init__(self):
        object.__setattr__(self, "start", ensure_utc(self.start))
        object.__setattr__(self, "end", ensure_utc(self.end))
        if self.end <= self.start:
            raise ValidationError("Time window end must be after its start")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def shifted(self, delta: timedelta) -> "TimeWindow":
        return TimeWindow(self.start + delta, self.end + delta)

    def overlaps(self, other: "TimeWindow") -> bool:
        return self.start < other.end and other.start < self.end


@dataclass
class Bin:
    bin_id: str
    location: Location
    waste_type: str = "mixed"
    fill_level: float = 0.0
    status: BinStatus = BinStatus.ACTIVE
    last_collected_at: Optional[datetime] = None
    zone: str = "default"
    missed_count: int = 0
    escalated: bool = False
    version: int = 0
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = BinStatus(self.status)
        self.last_collected_at = ensure_utc(self.last_collected_at)
        if not 0 <= self.fill_level <= 100:
            raise ValidationError(f"Fill level must be within 0-100, got {self.fill_level}")
        if self.missed_count < 0:
            raise ValidationError("Missed count cannot be negative")

    @property
    def is_schedulable(self) -> bool:
        return self.status in SCHEDULABLE_BIN_STATUSES


@dataclass
class CompletionDetails:
    completed_at: datetime
    actual_fill_level: float = 0.0
    collection_time: Optional[float] = None  # minutes

    def __post_init__(self):
        self.completed_at = ensure_utc(self.completed_at)
        if not 0 <= self.actual_fill_level <= 100:
            raise ValidationError(f"Actual fill level must be within 0-100, got {self.actual_fill_level}")
        if self.collection_time is not None and self.collection_time < 0:
            raise ValidationError("Collection time cannot be negative")


@dataclass
class Schedule:
    schedule_id: str
    bin_id: str
    collector_id: str
    time_slot: TimeWindow
    priority: int
    recurrence: Recurrence = Recurrence.NONE
    recurrence_end_date: Optional[date] = None
    status: ScheduleStatus = ScheduleStatus.PENDING
    completion_details: Optional[CompletionDetails] = None
    notes: str = ""
    status_reason: str = ""
    route_id: Optional[str] = None
    previous_schedule_id: Optional[str] = None
    created_at: Optional[datetime] = None
    version: int = 0
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.recurrence = Recurrence(self.recurrence)
        self.status = ScheduleStatus(self.status)
        if isinstance(self.priority, bool) or int(self.priority) != self.priority:
            raise ValidationError(f"Priority must be an integer, got {self.priority!r}")
        self.priority = int(self.priority)
        if not 1 <= self.priority <= 10:
            raise ValidationError(f"Priority must be within 1-10, got {self.priority}")
        if not self.collector_id:
            raise ValidationError("Schedule needs a collector")

    @property
    def scheduled_date(self) -> date:
        return self.time_slot.start.date()

    @property
    def is_pending(self) -> bool:
        return self.status is ScheduleStatus.PENDING


@dataclass
class RouteStop:
    bin_id: str
    order: int
    location: Location
    estimated_time: float = 0.0  # seconds from departure to arrival
    status: StopStatus = StopStatus.PENDING
    collected_at: Optional[datetime] = None
    notes: str = ""
    skip_reason: str = ""
    schedule_id: Optional[str] = None

    def __post_init__(self):
        self.status = StopStatus(self.status)
        self.collected_at = ensure_utc(self.collected_at)

    @property
    def is_collected(self) -> bool:
        return self.status is StopStatus.COLLECTED

    @property
    def is_resolved(self) -> bool:
        return self.status is not StopStatus.PENDING


@dataclass
class Route:
    route_id: str
    collector_id: str
    stops: List[RouteStop]
    start_location: Location
    end_location: Location
    zone: str = "default"
    distance: float = 0.0  # meters
    estimated_time: float = 0.0  # seconds
    status: RouteStatus = RouteStatus.PLANNED
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancel_reason: str = ""
    created_at: Optional[datetime] = None
    version: int = 0
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = RouteStatus.parse(self.status)
        orders = sorted(stop.order for stop in self.stops)
        if orders != list(range(1, len(self.stops) + 1)):
            raise ValidationError(f"Stop orders must be a permutation of 1..{len(self.stops)}, got {orders}")
        bin_ids = [stop.bin_id for stop in self.stops]
        if len(set(bin_ids)) != len(bin_ids):
            raise ValidationError("A bin can appear only once per route")

    @property
    def completion_rate(self) -> float:
        if not self.stops:
            return 0.0
        resolved = sum(1 for stop in self.stops if stop.is_resolved)
        return resolved / len(self.stops)

    @property
    def collected_count(self) -> int:
        return sum(1 for stop in self.stops if stop.is_collected)

    @property
    def ordered_stops(self) -> List[RouteStop]:
        return sorted(self.stops, key=lambda stop: stop.order)

    def stop_for(self, bin_id: str) -> Optional[RouteStop]:
        for stop in self.stops:
            if stop.bin_id == bin_id:
                return stop
        return None

    def pending_stops(self) -> List[RouteStop]:
        return [stop for stop in self.ordered_stops if not stop.is_resolved]


def successor_of(schedule: Schedule, window: TimeWindow, priority: int, created_at: datetime) -> Schedule:
    """Fresh pending schedule carrying bin, collector and recurrence settings forward."""
    return replace(
        schedule,
        schedule_id=new_id("sch"),
        time_slot=window,
        priority=priority,
        status=ScheduleStatus.PENDING,
        completion_details=None,
        status_reason="",
        route_id=None,
        previous_schedule_id=schedule.schedule_id,
        created_at=created_at,
        version=0,
        updated_at=None,
    )
