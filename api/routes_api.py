"""Route endpoints: build, inspect and execute collection routes."""
from typing import Optional

from fastapi import APIRouter, Depends
from shapely.geometry import mapping

from api.deps import get_engine, success
from api.schemas import RouteBuildRequest, RouteStatusUpdate, StopUpdate
from configurations.config import Config
from core.engine import SchedulingEngine
from models.collection_models import Route, RouteStatus
from models.serialization import route_to_dict
from routing.route_builder import build_route_geometry

router = APIRouter(prefix="/api/routes", tags=["routes"])


def _with_geometry(route: Route) -> dict:
    data = route_to_dict(route)
    data["geometry"] = mapping(build_route_geometry(route))
    return data


@router.post("/build")
def build_route(payload: RouteBuildRequest, engine: SchedulingEngine = Depends(get_engine)):
    """Build, store and return an optimized route for one collector."""
    route = engine.planner.plan(
        payload.bins,
        payload.start.to_location(),
        payload.end.to_location(),
        payload.collector,
        zone=payload.zone,
        timeout=payload.timeout_seconds or Config.ROUTE_BUILD_TIMEOUT_SECONDS,
    )
    return success(_with_geometry(route), status_code=201)


@router.get("")
def list_routes(collector_id: Optional[str] = None, status: Optional[str] = None,
                engine: SchedulingEngine = Depends(get_engine)):
    parsed = RouteStatus.parse(status) if status else None
    routes = [route_to_dict(r) for r in engine.tracker.list_routes(collector_id, parsed)]
    return success(routes, count=len(routes))


@router.get("/{route_id}")
def get_route(route_id: str, engine: SchedulingEngine = Depends(get_engine)):
    return success(_with_geometry(engine.tracker.get_route(route_id)))


@router.patch("/{route_id}/status")
def update_status(route_id: str, payload: RouteStatusUpdate, engine: SchedulingEngine = Depends(get_engine)):
    route = engine.tracker.update_status(route_id, payload.status, reason=payload.reason)
    return success(route_to_dict(route))


@router.patch("/{route_id}/stops/{bin_id}")
def update_stop(route_id: str, bin_id: str, payload: StopUpdate, engine: SchedulingEngine = Depends(get_engine)):
    if payload.action == "collected":
        route = engine.tracker.mark_stop_collected(
            route_id, bin_id,
            notes=payload.notes,
            actual_fill_level=payload.actual_fill_level,
            collection_time=payload.collection_time,
        )
    else:
        route = engine.tracker.mark_stop_skipped(route_id, bin_id, reason=payload.reason or payload.notes)
    return success(route_to_dict(route))
