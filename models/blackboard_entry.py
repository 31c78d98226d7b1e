"""Journal entries recorded by the blackboard for every unit of work."""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from datetime import datetime

PENDING = "pending"
COMMITTED = "committed"
FAILED = "failed"


@dataclass
class BlackboardEntry:
    entry_id: str
    entry_type: str
    data: Dict[str, Any]
    timestamp: datetime
    status: str = PENDING
    touched: List[str] = field(default_factory=list)
    error: Optional[str] = None
    finished_at: Optional[datetime] = None
