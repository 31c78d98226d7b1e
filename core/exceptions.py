"""Typed errors raised by the scheduling and routing engine."""


class SchedulingError(Exception):
    """Base class for every error the engine raises on purpose."""


class ValidationError(SchedulingError):
    """Malformed input."""


class InsufficientStopsError(ValidationError):
    """A route needs at least two distinct bins."""


class NoCollectorAvailableError(ValidationError):
    """The collector directory has no window that fits the request."""


class NotFoundError(SchedulingError):
    """Unknown schedule, route or bin id."""


class ConflictError(SchedulingError):
    """Concurrent or duplicate-state mutation."""


class InvalidStateError(SchedulingError):
    """Illegal state-machine transition."""


class GeoLookupError(SchedulingError):
    """The distance provider could not answer."""


class RouteBuildError(SchedulingError):
    """Route construction failed; no partial route is returned."""


class DataConsistencyError(SchedulingError):
    """A schedule or route references a bin that is gone or unusable."""
