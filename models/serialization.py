"""Plain-dict conversion for domain entities (JSON payloads and storage rows)."""
from datetime import date, datetime
from typing import Any, Dict, Optional

from models.collection_models import (
    Bin,
    CompletionDetails,
    Location,
    Route,
    RouteStop,
    Schedule,
    TimeWindow,
)


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def location_to_dict(location: Location) -> Dict[str, float]:
    return {"lon": location.lon, "lat": location.lat}


def location_from_dict(data: Dict[str, Any]) -> Location:
    if "coordinates" in data:  # GeoJSON point
        lon, lat = data["coordinates"][:2]
        return Location(lon=float(lon), lat=float(lat))
    return Location(lon=float(data["lon"]), lat=float(data["lat"]))


def window_to_dict(window: TimeWindow) -> Dict[str, str]:
    return {"start": window.start.isoformat(), "end": window.end.isoformat()}


def window_from_dict(data: Dict[str, Any]) -> TimeWindow:
    return TimeWindow(start=_parse_dt(data["start"]), end=_parse_dt(data["end"]))


def bin_to_dict(bin_: Bin) -> Dict[str, Any]:
    return {
        "bin_id": bin_.bin_id,
        "location": location_to_dict(bin_.location),
        "waste_type": bin_.waste_type,
        "fill_level": bin_.fill_level,
        "status": bin_.status.value,
        "last_collected_at": _dt(bin_.last_collected_at),
        "zone": bin_.zone,
        "missed_count": bin_.missed_count,
        "escalated": bin_.escalated,
        "version": bin_.version,
        "updated_at": _dt(bin_.updated_at),
    }


def bin_from_dict(data: Dict[str, Any]) -> Bin:
    return Bin(
        bin_id=data["bin_id"],
        location=location_from_dict(data["location"]),
        waste_type=data.get("waste_type", "mixed"),
        fill_level=float(data.get("fill_level", 0.0)),
        status=data.get("status", "active"),
        last_collected_at=_parse_dt(data.get("last_collected_at")),
        zone=data.get("zone", "default"),
        missed_count=int(data.get("missed_count", 0)),
        escalated=bool(data.get("escalated", False)),
        version=int(data.get("version", 0)),
        updated_at=_parse_dt(data.get("updated_at")),
    )


def completion_to_dict(details: Optional[CompletionDetails]) -> Optional[Dict[str, Any]]:
    if details is None:
        return None
    return {
        "completed_at": details.completed_at.isoformat(),
        "actual_fill_level": details.actual_fill_level,
        "collection_time": details.collection_time,
    }


def completion_from_dict(data: Optional[Dict[str, Any]]) -> Optional[CompletionDetails]:
    if not data:
        return None
    return CompletionDetails(
        completed_at=_parse_dt(data["completed_at"]),
        actual_fill_level=float(data.get("actual_fill_level", 0.0)),
        collection_time=data.get("collection_time"),
    )


def schedule_to_dict(schedule: Schedule) -> Dict[str, Any]:
    return {
        "schedule_id": schedule.schedule_id,
        "bin_id": schedule.bin_id,
        "collector_id": schedule.collector_id,
        "scheduled_date": schedule.scheduled_date.isoformat(),
        "time_slot": window_to_dict(schedule.time_slot),
        "priority": schedule.priority,
        "recurrence": schedule.recurrence.value,
        "recurrence_end_date": schedule.recurrence_end_date.isoformat() if schedule.recurrence_end_date else None,
        "status": schedule.status.value,
        "completion_details": completion_to_dict(schedule.completion_details),
        "notes": schedule.notes,
        "status_reason": schedule.status_reason,
        "route_id": schedule.route_id,
        "previous_schedule_id": schedule.previous_schedule_id,
        "created_at": _dt(schedule.created_at),
        "version": schedule.version,
        "updated_at": _dt(schedule.updated_at),
    }


def schedule_from_dict(data: Dict[str, Any]) -> Schedule:
    return Schedule(
        schedule_id=data["schedule_id"],
        bin_id=data["bin_id"],
        collector_id=data["collector_id"],
        time_slot=window_from_dict(data["time_slot"]),
        priority=int(data["priority"]),
        recurrence=data.get("recurrence", "none"),
        recurrence_end_date=_parse_date(data.get("recurrence_end_date")),
        status=data.get("status", "pending"),
        completion_details=completion_from_dict(data.get("completion_details")),
        notes=data.get("notes", ""),
        status_reason=data.get("status_reason", ""),
        route_id=data.get("route_id"),
        previous_schedule_id=data.get("previous_schedule_id"),
        created_at=_parse_dt(data.get("created_at")),
        version=int(data.get("version", 0)),
        updated_at=_parse_dt(data.get("updated_at")),
    )


def stop_to_dict(stop: RouteStop) -> Dict[str, Any]:
    return {
        "bin_id": stop.bin_id,
        "order": stop.order,
        "location": location_to_dict(stop.location),
        "estimated_time": stop.estimated_time,
        "status": stop.status.value,
        "is_collected": stop.is_collected,
        "collected_at": _dt(stop.collected_at),
        "notes": stop.notes,
        "skip_reason": stop.skip_reason,
        "schedule_id": stop.schedule_id,
    }


def stop_from_dict(data: Dict[str, Any]) -> RouteStop:
    return RouteStop(
        bin_id=data["bin_id"],
        order=int(data["order"]),
        location=location_from_dict(data["location"]),
        estimated_time=float(data.get("estimated_time", 0.0)),
        status=data.get("status", "pending"),
        collected_at=_parse_dt(data.get("collected_at")),
        notes=data.get("notes", ""),
        skip_reason=data.get("skip_reason", ""),
        schedule_id=data.get("schedule_id"),
    )


def route_to_dict(route: Route) -> Dict[str, Any]:
    return {
        "route_id": route.route_id,
        "collector_id": route.collector_id,
        "zone": route.zone,
        "stops": [stop_to_dict(stop) for stop in route.ordered_stops],
        "start_location": location_to_dict(route.start_location),
        "end_location": location_to_dict(route.end_location),
        "distance": route.distance,
        "estimated_time": route.estimated_time,
        "status": route.status.value,
        "completion_rate": route.completion_rate,
        "started_at": _dt(route.started_at),
        "completed_at": _dt(route.completed_at),
        "cancel_reason": route.cancel_reason,
        "created_at": _dt(route.created_at),
        "version": route.version,
        "updated_at": _dt(route.updated_at),
    }


def route_from_dict(data: Dict[str, Any]) -> Route:
    # completion_rate is derived from the stops and never read back
    return Route(
        route_id=data["route_id"],
        collector_id=data["collector_id"],
        stops=[stop_from_dict(item) for item in data.get("stops", [])],
        start_location=location_from_dict(data["start_location"]),
        end_location=location_from_dict(data["end_location"]),
        zone=data.get("zone", "default"),
        distance=float(data.get("distance", 0.0)),
        estimated_time=float(data.get("estimated_time", 0.0)),
        status=data.get("status", "planned"),
        started_at=_parse_dt(data.get("started_at")),
        completed_at=_parse_dt(data.get("completed_at")),
        cancel_reason=data.get("cancel_reason", ""),
        created_at=_parse_dt(data.get("created_at")),
        version=int(data.get("version", 0)),
        updated_at=_parse_dt(data.get("updated_at")),
    )
