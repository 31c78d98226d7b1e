"""Collector directory: roster loading and next-available-window lookup."""
import os
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import pandas as pd
import requests
from loguru import logger

from configurations.config import Config
from core.exceptions import NoCollectorAvailableError
from models.collection_models import ScheduleStatus, TimeWindow, ensure_utc, utcnow

ACTIVE_STATUSES = ['ACTIVE', 'AVAILABLE', 'ONLINE', 'ON_DUTY']


def round_up(moment: datetime, minutes: int) -> datetime:
    """Round up to the next multiple of `minutes` past the hour."""
    if minutes <= 0:
        return moment
    discard = timedelta(minutes=moment.minute % minutes, seconds=moment.second,
                        microseconds=moment.microsecond)
    if discard:
        moment = moment - discard + timedelta(minutes=minutes)
    return moment


class CollectorService:
    """Answers "next available window for collector or zone X".

    The roster comes from an explicit DataFrame, a CSV file or the collector
    API, in that order of preference. Bookings are the collector's pending
    schedules on the blackboard. Shift hours are interpreted in UTC.
    """

    def __init__(self, blackboard=None, roster: Optional[pd.DataFrame] = None,
                 csv_path: Optional[str] = None, base_url: Optional[str] = None,
                 token: Optional[str] = None, clock=utcnow):
        self.blackboard = blackboard
        self.csv_path = csv_path if csv_path is not None else Config.COLLECTORS_CSV
        self.base_url = (base_url if base_url is not None else Config.COLLECTOR_API_URL).rstrip('/')
        self.token = token if token is not None else Config.COLLECTOR_API_TOKEN
        self.clock = clock
        self.slot_minutes = Config.SLOT_ROUNDING_MINUTES
        self.search_days = Config.WINDOW_SEARCH_DAYS
        self._roster = self._standardize_collector_data(roster) if roster is not None else None

        logger.info(f"CollectorService initialized (source: {self._source_name()})")

    def _source_name(self) -> str:
        if self._roster is not None:
            return "in-memory roster"
        if self.csv_path:
            return f"CSV {self.csv_path}"
        if self.base_url:
            return f"API {self.base_url}"
        return "none"

    def get_roster(self) -> pd.DataFrame:
        """Active collectors with standardized columns."""
        if self._roster is None:
            self._roster = self._load_roster()
        roster = self._roster
        return roster[roster['status'].str.upper().isin(ACTIVE_STATUSES)].copy()

    def refresh(self) -> None:
        self._roster = None

    def get_collectors_by_zone(self, zone: str) -> pd.DataFrame:
        roster = self.get_roster()
        return roster[roster['zone'].astype(str) == str(zone)]

    def _load_roster(self) -> pd.DataFrame:
        if self.csv_path and os.path.exists(self.csv_path):
            logger.info(f"Loading collector roster from {self.csv_path}")
            return self._standardize_collector_data(pd.read_csv(self.csv_path))
        if self.base_url:
            return self._fetch_roster()
        logger.warning("No collector roster configured")
        return self._standardize_collector_data(pd.DataFrame())

    def _fetch_roster(self) -> pd.DataFrame:
        url = f"{self.base_url}/api/collectors"
        headers = {'accept': 'application/json'}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'

        logger.info(f"Fetching collectors from: {url}")
        try:
            response = requests.get(url, headers=headers, timeout=30)
        except requests.RequestException as e:
            logger.error(f"Error fetching collector roster: {e}")
            return self._standardize_collector_data(pd.DataFrame())

        if response.status_code != 200:
            logger.error(f"API returned status {response.status_code}: {response.text[:200]}")
            return self._standardize_collector_data(pd.DataFrame())

        payload = response.json()
        if isinstance(payload, dict):
            for key in ('content', 'data', 'collectors'):
                if key in payload:
                    payload = payload[key]
                    break
        df = pd.DataFrame(payload if isinstance(payload, list) else [payload])
        logger.success(f"Loaded {len(df)} collectors from API")
        return self._standardize_collector_data(df)

    def _standardize_collector_data(self, df: pd.DataFrame) -> pd.DataFrame:
        """Standardize collector column names and fill defaults."""
        column_mappings = {
            'id': 'collector_id',
            '_id': 'collector_id',
            'collectorId': 'collector_id',
            'userId': 'collector_id',
            'area': 'zone',
            'ward': 'zone',
            'wardNo': 'zone',
            'shiftStart': 'shift_start',
            'shiftEnd': 'shift_end',
        }
        df = df.rename(columns={old: new for old, new in column_mappings.items() if old in df.columns})

        if 'collector_id' not in df.columns:
            df['collector_id'] = [f"collector_{i + 1}" for i in range(len(df))]
        if 'zone' not in df.columns:
            df['zone'] = 'default'
        if 'status' not in df.columns:
            df['status'] = 'active'
        if 'shift_start' not in df.columns:
            df['shift_start'] = Config.DEFAULT_SHIFT_START_HOUR
        if 'shift_end' not in df.columns:
            df['shift_end'] = Config.DEFAULT_SHIFT_END_HOUR

        df['collector_id'] = df['collector_id'].astype(str)
        df['zone'] = df['zone'].astype(str)
        df['status'] = df['status'].astype(str)
        df['shift_start'] = df['shift_start'].fillna(Config.DEFAULT_SHIFT_START_HOUR).astype(int)
        df['shift_end'] = df['shift_end'].fillna(Config.DEFAULT_SHIFT_END_HOUR).astype(int)
        return df[['collector_id', 'zone', 'status', 'shift_start', 'shift_end']].sort_values('collector_id')

    def _bookings(self, collector_id: str) -> List[TimeWindow]:
        if self.blackboard is None:
            return []
        schedules = self.blackboard.list_schedules(collector_id=collector_id, status=ScheduleStatus.PENDING)
        return sorted((s.time_slot for s in schedules), key=lambda w: w.start)

    def _earliest_slot(self, collector_id: str, shift_start: int, shift_end: int,
                       duration: timedelta, not_before: datetime) -> Optional[TimeWindow]:
        busy = self._bookings(collector_id)
        horizon = not_before + timedelta(days=self.search_days)
        candidate = round_up(not_before, self.slot_minutes)

        while candidate < horizon:
            midnight = candidate.replace(hour=0, minute=0, second=0, microsecond=0)
            day_start = midnight + timedelta(hours=shift_start)
            day_end = midnight + timedelta(hours=shift_end)
            if candidate < day_start:
                candidate = day_start
            if candidate + duration > day_end:
                candidate = midnight + timedelta(days=1, hours=shift_start)
                continue

            window = TimeWindow(candidate, candidate + duration)
            clash = next((b for b in busy if b.overlaps(window)), None)
            if clash is None:
                return window
            candidate = round_up(clash.end, self.slot_minutes)

        return None

    def next_available_window(self, collector_or_zone: str, duration: timedelta,
                              not_before: Optional[datetime] = None) -> Tuple[str, TimeWindow]:
        """Earliest free window for a collector id, or for any active collector of a zone."""
        if duration <= timedelta(0):
            raise NoCollectorAvailableError("Window duration must be positive")
        not_before = ensure_utc(not_before) if not_before is not None else self.clock()

        roster = self.get_roster()
        candidates = roster[roster['collector_id'] == str(collector_or_zone)]
        if candidates.empty:
            candidates = self.get_collectors_by_zone(collector_or_zone)
        if candidates.empty:
            raise NoCollectorAvailableError(f"No active collector for '{collector_or_zone}'")

        best: Optional[Tuple[datetime, str, TimeWindow]] = None
        for row in candidates.itertuples(index=False):
            window = self._earliest_slot(row.collector_id, int(row.shift_start), int(row.shift_end),
                                         duration, not_before)
            if window is None:
                continue
            key = (window.start, row.collector_id, window)
            if best is None or key[:2] < best[:2]:
                best = key

        if best is None:
            raise NoCollectorAvailableError(
                f"No free window of {duration} for '{collector_or_zone}' within {self.search_days} days"
            )
        return best[1], best[2]
