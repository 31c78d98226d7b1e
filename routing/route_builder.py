"""Build ordered collection routes: nearest-neighbour tour improved with 2-opt."""
import time
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
from loguru import logger
from shapely.geometry import LineString

from configurations.config import Config
from core.exceptions import GeoLookupError, InsufficientStopsError, RouteBuildError, ValidationError
from models.collection_models import Bin, Location, Route, RouteStatus, RouteStop, new_id, utcnow

IMPROVEMENT_EPSILON = 1e-9


class RouteBuilder:
    """Single-collector route construction.

    The tour starts at ``start``, visits every bin once and finishes at
    ``end``. Output is deterministic for a fixed bin set, anchors and
    distance provider: bins are processed in id order, nearest-neighbour ties
    go to the more urgent bin and then the lower bin id, and 2-opt always
    applies the first strictly improving reversal it finds.
    """

    def __init__(self, distance_provider, service_time_seconds: float = Config.STOP_SERVICE_SECONDS,
                 max_iterations: int = Config.TWO_OPT_MAX_ITERATIONS, clock=utcnow):
        self.distance_provider = distance_provider
        self.service_time_seconds = service_time_seconds
        self.max_iterations = max_iterations
        self.clock = clock

    def build_route(self, bins: Iterable[Bin], start: Location, end: Location, collector_id: str,
                    zone: Optional[str] = None, priorities: Optional[Dict[str, int]] = None,
                    timeout: Optional[float] = None) -> Route:
        if not collector_id:
            raise ValidationError("A route needs a collector")

        unique: Dict[str, Bin] = {}
        for bin_ in bins:
            unique.setdefault(bin_.bin_id, bin_)
        ordered_bins = [unique[bin_id] for bin_id in sorted(unique)]
        if len(ordered_bins) < 2:
            raise InsufficientStopsError(f"A route needs at least 2 distinct bins, got {len(ordered_bins)}")

        deadline = time.monotonic() + timeout if timeout is not None else None
        priorities = priorities or {}

        logger.info(f"Building route for collector {collector_id} over {len(ordered_bins)} bins")

        points = [start] + [b.location for b in ordered_bins] + [end]
        labels = ["start"] + [f"bin {b.bin_id}" for b in ordered_bins] + ["end"]
        meters, seconds = self._distance_matrix(points, labels, deadline)

        urgency = [0] + [priorities.get(b.bin_id, 0) for b in ordered_bins] + [0]
        tour = self._nearest_neighbour(meters, urgency)
        initial_length = self._tour_length(tour, meters)
        tour = self._two_opt(tour, meters, deadline)
        final_length = self._tour_length(tour, meters)

        route = self._assemble(tour, ordered_bins, meters, seconds, start, end, collector_id,
                               zone or ordered_bins[0].zone)
        logger.info(
            f"Route {route.route_id}: {len(route.stops)} stops, {route.distance:.0f}m "
            f"(nearest neighbour {initial_length:.0f}m, 2-opt {final_length:.0f}m), "
            f"{route.estimated_time / 60:.1f} min"
        )
        return route

    def _check_deadline(self, deadline: Optional[float]) -> None:
        if deadline is not None and time.monotonic() > deadline:
            raise RouteBuildError("Route build timed out; partial work discarded")

    def _lookup(self, a: Location, b: Location, label: str, deadline: Optional[float]):
        for attempt in (1, 2):
            self._check_deadline(deadline)
            try:
                return self.distance_provider.distance(a, b)
            except GeoLookupError as e:
                if attempt == 1:
                    logger.warning(f"Distance lookup {label} failed, retrying once: {e}")
                    continue
                raise RouteBuildError(f"Distance lookup failed for stop {label}: {e}") from e

    def _distance_matrix(self, points: List[Location], labels: List[str],
                         deadline: Optional[float]) -> Tuple[np.ndarray, np.ndarray]:
        """Meters/seconds for every leg a path start -> bins -> end can use."""
        n = len(points)
        last = n - 1
        meters = np.zeros((n, n))
        seconds = np.zeros((n, n))

        for i in range(last):
            for j in range(1, n):
                if i == j or (i == 0 and j == last):
                    continue
                estimate = self._lookup(points[i], points[j], f"{labels[i]} -> {labels[j]}", deadline)
                meters[i][j] = estimate.meters
                seconds[i][j] = estimate.seconds

        return meters, seconds

    def _nearest_neighbour(self, meters: np.ndarray, urgency: List[int]) -> List[int]:
        last = len(meters) - 1
        current = 0
        unvisited = set(range(1, last))
        tour = [0]

        while unvisited:
            # index order equals bin id order, so j is the final tie-break
            nxt = min(unvisited, key=lambda j: (meters[current][j], -urgency[j], j))
            tour.append(nxt)
            unvisited.remove(nxt)
            current = nxt

        tour.append(last)
        return tour

    def _tour_length(self, tour: List[int], matrix: np.ndarray) -> float:
        idx = np.asarray(tour)
        return float(matrix[idx[:-1], idx[1:]].sum())

    def _two_opt(self, tour: List[int], meters: np.ndarray, deadline: Optional[float]) -> List[int]:
        best = list(tour)
        best_length = self._tour_length(best, meters)
        iterations = 0
        improved = True

        while improved and iterations < self.max_iterations:
            improved = False
            for i in range(1, len(best) - 2):
                for k in range(i + 1, len(best) - 1):
                    self._check_deadline(deadline)
                    candidate = best[:i] + best[i:k + 1][::-1] + best[k + 1:]
                    # full length, so asymmetric legs inside the reversed span count too
                    length = self._tour_length(candidate, meters)
                    if length < best_length - IMPROVEMENT_EPSILON:
                        best, best_length = candidate, length
                        iterations += 1
                        improved = True
                        break
                if improved:
                    break

        if iterations >= self.max_iterations:
            logger.warning(f"2-opt stopped at its iteration budget ({self.max_iterations})")
        return best

    def _assemble(self, tour: List[int], ordered_bins: List[Bin], meters: np.ndarray,
                  seconds: np.ndarray, start: Location, end: Location, collector_id: str,
                  zone: str) -> Route:
        last = len(tour) - 1
        end_index = tour[last]
        total_meters = 0.0
        total_seconds = 0.0
        stops = []

        for position in range(1, len(tour)):
            prev, cur = tour[position - 1], tour[position]
            total_meters += meters[prev][cur]
            total_seconds += seconds[prev][cur]
            if cur == end_index:
                continue
            bin_ = ordered_bins[cur - 1]
            stops.append(RouteStop(
                bin_id=bin_.bin_id,
                order=position,
                location=bin_.location,
                estimated_time=round(total_seconds, 1),
            ))
            total_seconds += self.service_time_seconds

        return Route(
            route_id=new_id("route"),
            collector_id=collector_id,
            stops=stops,
            start_location=start,
            end_location=end,
            zone=zone,
            distance=round(total_meters, 1),
            estimated_time=round(total_seconds, 1),
            status=RouteStatus.PLANNED,
            created_at=self.clock(),
        )


def build_route_geometry(route: Route) -> LineString:
    """Straight-line geometry start -> stops (in order) -> end."""
    coords = [route.start_location.as_tuple()]
    coords.extend(stop.location.as_tuple() for stop in route.ordered_stops)
    coords.append(route.end_location.as_tuple())
    return LineString(coords)
