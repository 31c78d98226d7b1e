"""Bin registry endpoints."""
from fastapi import APIRouter, Depends

from api.deps import get_engine, success
from api.schemas import BinIn
from core.engine import SchedulingEngine
from core.exceptions import NotFoundError
from models.serialization import bin_to_dict

router = APIRouter(prefix="/api/bins", tags=["bins"])


@router.post("")
def register_bin(payload: BinIn, engine: SchedulingEngine = Depends(get_engine)):
    """Insert or update a bin as reported by the bin registry."""
    bin_ = engine.blackboard.register_bin(payload.to_bin())
    return success(bin_to_dict(bin_))


@router.get("")
def list_bins(engine: SchedulingEngine = Depends(get_engine)):
    bins = [bin_to_dict(b) for b in engine.blackboard.list_bins()]
    return success(bins, count=len(bins))


@router.get("/{bin_id}")
def get_bin(bin_id: str, engine: SchedulingEngine = Depends(get_engine)):
    bin_ = engine.blackboard.get_bin(bin_id)
    if bin_ is None:
        raise NotFoundError(f"Bin {bin_id} not found")
    return success(bin_to_dict(bin_))


@router.delete("/{bin_id}")
def remove_bin(bin_id: str, engine: SchedulingEngine = Depends(get_engine)):
    engine.blackboard.remove_bin(bin_id)
    return success({"bin_id": bin_id, "removed": True})


@router.get("/{bin_id}/priority")
def get_priority(bin_id: str, engine: SchedulingEngine = Depends(get_engine)):
    """Current priority score with its components."""
    bin_ = engine.blackboard.get_bin(bin_id)
    if bin_ is None:
        raise NotFoundError(f"Bin {bin_id} not found")
    return success(engine.scorer.breakdown(bin_))
