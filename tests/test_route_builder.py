"""Unit tests for route construction."""
import random
import time

import pytest
from shapely.geometry import LineString

from core.exceptions import InsufficientStopsError, RouteBuildError
from fakes import FixedClock, GridDistanceProvider, make_bin
from models.collection_models import Location, RouteStatus
from routing.route_builder import RouteBuilder, build_route_geometry


def tour_length(points):
    provider = GridDistanceProvider()
    return sum(provider.distance(a, b).meters for a, b in zip(points, points[1:]))


class TestRouteBuilder:
    def setup_method(self):
        self.provider = GridDistanceProvider()
        self.builder = RouteBuilder(self.provider, service_time_seconds=120, max_iterations=1000,
                                    clock=FixedClock())
        self.start = Location(0, 0)
        self.end = Location(4, 0)

    def test_requires_two_distinct_bins(self):
        with pytest.raises(InsufficientStopsError):
            self.builder.build_route([make_bin("a", 1, 0)], self.start, self.end, "c1")
        with pytest.raises(InsufficientStopsError):
            self.builder.build_route([make_bin("a", 1, 0), make_bin("a", 1, 0)], self.start, self.end, "c1")

    def test_collinear_route(self):
        bins = [make_bin("b3", 3, 0), make_bin("b1", 1, 0), make_bin("b2", 2, 0)]
        route = self.builder.build_route(bins, self.start, self.end, "c1")

        assert [s.bin_id for s in route.ordered_stops] == ["b1", "b2", "b3"]
        assert [s.order for s in route.ordered_stops] == [1, 2, 3]
        assert route.distance == pytest.approx(4000)
        # 400 s of driving plus 3 stops of service
        assert route.estimated_time == pytest.approx(760)
        assert [s.estimated_time for s in route.ordered_stops] == pytest.approx([100, 320, 540])
        assert route.status is RouteStatus.PLANNED
        assert route.collector_id == "c1"
        assert route.zone == "north"

    def test_deterministic(self):
        rng = random.Random(7)
        bins = [make_bin(f"b{i}", rng.uniform(0, 5), rng.uniform(0, 5)) for i in range(8)]
        first = self.builder.build_route(bins, self.start, self.end, "c1")
        second = self.builder.build_route(list(reversed(bins)), self.start, self.end, "c1")

        assert [s.bin_id for s in first.ordered_stops] == [s.bin_id for s in second.ordered_stops]
        assert first.distance == second.distance

    def test_result_has_no_improving_reversal(self):
        rng = random.Random(11)
        bins = [make_bin(f"b{i}", rng.uniform(0, 5), rng.uniform(0, 5)) for i in range(9)]
        route = self.builder.build_route(bins, self.start, self.end, "c1")

        points = [self.start] + [s.location for s in route.ordered_stops] + [self.end]
        best = tour_length(points)
        assert route.distance == pytest.approx(best, abs=0.1)
        for i in range(1, len(points) - 2):
            for k in range(i + 1, len(points) - 1):
                candidate = points[:i] + points[i:k + 1][::-1] + points[k + 1:]
                assert tour_length(candidate) >= best - 1e-6

    def test_swapping_start_and_end(self):
        bins = [make_bin("b1", 1, 0.1), make_bin("b2", 2, -0.1), make_bin("b3", 3, 0.1)]
        forward = self.builder.build_route(bins, self.start, self.end, "c1")
        backward = self.builder.build_route(bins, self.end, self.start, "c1")

        assert backward.distance <= forward.distance + 1e-6
        assert [s.bin_id for s in backward.ordered_stops] == ["b3", "b2", "b1"]

    def test_tie_break_prefers_urgent_then_id(self):
        bins = [make_bin("a", 0, -1), make_bin("b", 0, 1)]
        end = Location(5, 0)

        by_id = self.builder.build_route(bins, self.start, end, "c1")
        assert by_id.ordered_stops[0].bin_id == "a"

        by_priority = self.builder.build_route(bins, self.start, end, "c1", priorities={"a": 2, "b": 9})
        assert by_priority.ordered_stops[0].bin_id == "b"

    def test_failed_lookup_retried_once(self):
        provider = GridDistanceProvider(failures={((0, 0), (1, 0)): 1})
        builder = RouteBuilder(provider, service_time_seconds=120)
        route = builder.build_route([make_bin("b1", 1, 0), make_bin("b2", 2, 0)], self.start, self.end, "c1")
        assert len(route.stops) == 2

    def test_second_failure_aborts(self):
        provider = GridDistanceProvider(failures={((0, 0), (1, 0)): 2})
        builder = RouteBuilder(provider, service_time_seconds=120)
        with pytest.raises(RouteBuildError, match="b1"):
            builder.build_route([make_bin("b1", 1, 0), make_bin("b2", 2, 0)], self.start, self.end, "c1")

    def test_timeout(self):
        provider = GridDistanceProvider(delay=lambda: time.sleep(0.01))
        builder = RouteBuilder(provider, service_time_seconds=120)
        bins = [make_bin(f"b{i}", i, 1) for i in range(1, 5)]
        with pytest.raises(RouteBuildError, match="timed out"):
            builder.build_route(bins, self.start, self.end, "c1", timeout=0.001)

    def test_geometry(self):
        bins = [make_bin("b1", 1, 0), make_bin("b2", 2, 0)]
        route = self.builder.build_route(bins, self.start, self.end, "c1")
        line = build_route_geometry(route)
        assert isinstance(line, LineString)
        assert list(line.coords) == [(0, 0), (1, 0), (2, 0), (4, 0)]
