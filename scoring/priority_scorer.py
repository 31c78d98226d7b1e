"""Collection priority scoring for bins."""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from configurations.config import Config
from models.collection_models import Bin, BinStatus, ensure_utc, utcnow

MIN_PRIORITY = 1
MAX_PRIORITY = 10

URGENT_TIER = "urgent"
WARNING_TIER = "warning"
NORMAL_TIER = "normal"

_TIER_RANK = {NORMAL_TIER: 0, WARNING_TIER: 1, URGENT_TIER: 2}


def priority_tier(score: int) -> str:
    """Badge bands used across the dashboards: >=8 urgent, 4-7 warning."""
    if score >= 8:
        return URGENT_TIER
    if score >= 4:
        return WARNING_TIER
    return NORMAL_TIER


def tier_rank(score: int) -> int:
    return _TIER_RANK[priority_tier(score)]


@dataclass(frozen=True)
class CollectionHistory:
    missed_count: int = 0
    escalated: bool = False

    @classmethod
    def from_bin(cls, bin_: Bin) -> "CollectionHistory":
        return cls(missed_count=bin_.missed_count, escalated=bin_.escalated)


class PriorityScorer:
    def __init__(self, warning_fill: float = Config.PRIORITY_WARNING_FILL,
                 urgent_fill: float = Config.PRIORITY_URGENT_FILL,
                 stale_hours: float = Config.PRIORITY_STALE_HOURS,
                 max_age_bonus: int = Config.PRIORITY_MAX_AGE_BONUS,
                 clock=utcnow):
        if not 0 < warning_fill < urgent_fill <= 100:
            raise ValueError("Fill thresholds must satisfy 0 < warning < urgent <= 100")
        self.warning_fill = warning_fill
        self.urgent_fill = urgent_fill
        self.stale_hours = stale_hours
        self.max_age_bonus = max_age_bonus
        self.clock = clock

    def fill_score(self, fill_level: float) -> int:
        """Piecewise-linear base: 1-3 below warning, 4-7 up to urgent, 8-10 above."""
        fill = min(max(fill_level, 0.0), 100.0)
        if fill < self.warning_fill:
            return 1 + min(2, int(fill * 3 / self.warning_fill))
        if fill < self.urgent_fill:
            span = self.urgent_fill - self.warning_fill
            return 4 + min(3, int((fill - self.warning_fill) * 4 / span))
        span = 100.0 - self.urgent_fill + 1.0
        return 8 + min(2, int((fill - self.urgent_fill) * 3 / span))

    def age_bonus(self, last_collected_at: Optional[datetime], now: datetime) -> int:
        # never collected counts as stale
        if last_collected_at is None:
            return self.max_age_bonus
        hours = (now - ensure_utc(last_collected_at)).total_seconds() / 3600.0
        if hours <= 0 or self.stale_hours <= 0:
            return 0
        return min(self.max_age_bonus, int(hours // self.stale_hours))

    def breakdown(self, bin_: Bin, history: Optional[CollectionHistory] = None,
                  now: Optional[datetime] = None) -> Dict[str, object]:
        history = history or CollectionHistory.from_bin(bin_)
        now = ensure_utc(now) if now is not None else self.clock()

        base = self.fill_score(bin_.fill_level)
        age = self.age_bonus(bin_.last_collected_at, now)
        missed = max(0, history.missed_count)
        forced = bin_.status is BinStatus.OVERFLOW or history.escalated

        if forced:
            score = MAX_PRIORITY
        else:
            score = max(MIN_PRIORITY, min(MAX_PRIORITY, base + age + missed))

        return {
            "bin_id": bin_.bin_id,
            "priority": score,
            "tier": priority_tier(score),
            "fill_score": base,
            "age_bonus": age,
            "missed_bonus": missed,
            "forced": forced,
            "fill_level": bin_.fill_level,
            "computed_at": now.isoformat(),
        }

    def score(self, bin_: Bin, history: Optional[CollectionHistory] = None,
              now: Optional[datetime] = None) -> int:
        return self.breakdown(bin_, history, now)["priority"]
