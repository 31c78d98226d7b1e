"""Geo/distance providers: OSRM road distances and an offline haversine estimate."""
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Tuple

import numpy as np
import requests

from configurations.config import Config
from core.exceptions import GeoLookupError
from models.collection_models import Location

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000


@dataclass(frozen=True)
class TravelEstimate:
    meters: float
    seconds: float


def haversine_distance(coord1: Tuple[float, float], coord2: Tuple[float, float]) -> float:
    """Calculate Haversine distance between two (lon, lat) coordinates in meters."""
    lat1, lon1 = np.radians(coord1[1]), np.radians(coord1[0])
    lat2, lon2 = np.radians(coord2[1]), np.radians(coord2[0])

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = np.sin(dlat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2) ** 2
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))

    return float(EARTH_RADIUS_M * c)


class HaversineDistanceProvider:
    """Straight-line distance with a constant average driving speed."""

    def __init__(self, speed_kmh: float = Config.AVERAGE_SPEED_KMH):
        if speed_kmh <= 0:
            raise ValueError("Average speed must be positive")
        self.speed_ms = speed_kmh * 1000 / 3600

    def distance(self, a: Location, b: Location) -> TravelEstimate:
        meters = haversine_distance(a.as_tuple(), b.as_tuple())
        return TravelEstimate(meters=meters, seconds=meters / self.speed_ms)


class OSRMRouter:
    """OSRM routing service for real-world driving distances.

    Lookups are cached per ordered coordinate pair; the cache is shared by
    concurrent route builds and guarded by a lock.
    """

    def __init__(self, base_url: str = Config.OSRM_URL, profile: str = Config.OSRM_PROFILE,
                 timeout: float = Config.OSRM_TIMEOUT_SECONDS, session: requests.Session = None):
        self.base_url = base_url.rstrip('/')
        self.profile = profile
        self.timeout = timeout
        self.session = session or requests.Session()
        self._cache: Dict[Tuple[Tuple[float, float], Tuple[float, float]], TravelEstimate] = {}
        self._lock = threading.Lock()

    def distance(self, a: Location, b: Location) -> TravelEstimate:
        key = (a.as_tuple(), b.as_tuple())
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        if a == b:
            estimate = TravelEstimate(meters=0.0, seconds=0.0)
        else:
            estimate = self._fetch(a, b)

        with self._lock:
            self._cache[key] = estimate
        return estimate

    def _fetch(self, a: Location, b: Location) -> TravelEstimate:
        url = f"{self.base_url}/route/v1/{self.profile}/{a.lon},{a.lat};{b.lon},{b.lat}"
        params = {'overview': 'false', 'steps': 'false'}

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"OSRM request failed: {e}")
            raise GeoLookupError(f"OSRM lookup failed for {a.as_tuple()} -> {b.as_tuple()}: {e}")

        if data.get('code') != 'Ok' or not data.get('routes'):
            message = data.get('message', data.get('code', 'no route'))
            logger.warning(f"OSRM returned error: {message}")
            raise GeoLookupError(f"OSRM found no route {a.as_tuple()} -> {b.as_tuple()}: {message}")

        route = data['routes'][0]
        return TravelEstimate(meters=float(route.get('distance', 0.0)),
                              seconds=float(route.get('duration', 0.0)))

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()


def build_distance_provider(use_osrm: bool = Config.USE_OSRM):
    if use_osrm:
        logger.info(f"Using OSRM distances from {Config.OSRM_URL}")
        return OSRMRouter()
    logger.info("Using haversine distances")
    return HaversineDistanceProvider()
