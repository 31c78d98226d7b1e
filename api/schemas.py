"""Request bodies for the scheduling API."""
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from models.collection_models import Bin, BinStatus, Location, Recurrence, TimeWindow


class LocationIn(BaseModel):
    lon: float = Field(..., ge=-180, le=180)
    lat: float = Field(..., ge=-90, le=90)

    def to_location(self) -> Location:
        return Location(lon=self.lon, lat=self.lat)


class WindowIn(BaseModel):
    start: datetime
    end: datetime

    def to_window(self) -> TimeWindow:
        return TimeWindow(self.start, self.end)


class BinIn(BaseModel):
    bin_id: str = Field(..., min_length=1)
    location: LocationIn
    waste_type: str = "mixed"
    fill_level: float = Field(0.0, ge=0, le=100)
    status: BinStatus = BinStatus.ACTIVE
    last_collected_at: Optional[datetime] = None
    zone: str = "default"
    missed_count: int = Field(0, ge=0)
    escalated: bool = False

    def to_bin(self) -> Bin:
        return Bin(
            bin_id=self.bin_id,
            location=self.location.to_location(),
            waste_type=self.waste_type,
            fill_level=self.fill_level,
            status=self.status,
            last_collected_at=self.last_collected_at,
            zone=self.zone,
            missed_count=self.missed_count,
            escalated=self.escalated,
        )


class RouteBuildRequest(BaseModel):
    bins: List[str]
    start: LocationIn
    end: LocationIn
    collector: str = Field(..., min_length=1)
    zone: Optional[str] = None
    timeout_seconds: Optional[float] = Field(None, gt=0)


class RouteStatusUpdate(BaseModel):
    status: str
    reason: str = ""


class StopUpdate(BaseModel):
    action: Literal["collected", "skipped"]
    notes: str = ""
    reason: str = ""
    actual_fill_level: float = Field(0.0, ge=0, le=100)
    collection_time: Optional[float] = Field(None, ge=0)


class ScheduleCreate(BaseModel):
    bin: str = Field(..., min_length=1)
    collector: str = Field(..., min_length=1)
    window: WindowIn
    recurrence: Recurrence = Recurrence.NONE
    recurrence_end_date: Optional[date] = None
    priority: Optional[int] = Field(None, ge=1, le=10)
    notes: str = ""
    supersede: bool = False


class RescheduleRequest(BaseModel):
    window: WindowIn
    priority: Optional[int] = Field(None, ge=1, le=10)
    reason: str = ""


class CancelRequest(BaseModel):
    reason: str = ""


class CompleteRequest(BaseModel):
    completed_at: Optional[datetime] = None
    actual_fill_level: float = Field(0.0, ge=0, le=100)
    collection_time: Optional[float] = Field(None, ge=0)


class MissedRequest(BaseModel):
    reason: str = ""
