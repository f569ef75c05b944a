import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_current_user
from ..errors import raise_service_error
from ..services import benchmark

router = APIRouter(prefix="/benchmark", tags=["benchmark"])
logger = logging.getLogger(__name__)


def _target_user(user: dict, requested: Optional[int]) -> int:
    if requested is None:
        return user["id"]
    if user.get("role") == "customer" and requested != user["id"]:
        raise HTTPException(status_code=403, detail="Forbidden")
    return requested


@router.get("")
def benchmark_ledger(
    userId: Optional[int] = None,
    symbol: str = "QQQ",
    year: Optional[int] = None,
    user: dict = Depends(get_current_user),
):
    try:
        return benchmark.ledger(_target_user(user, userId), symbol, year)
    except Exception as exc:
        raise_service_error(exc, "Benchmark")


@router.get("/stats")
def benchmark_stats(
    userId: Optional[int] = None,
    symbol: str = "QQQ",
    year: Optional[int] = None,
    user: dict = Depends(get_current_user),
):
    try:
        return {"symbol": symbol.upper(), "stats": benchmark.stats(_target_user(user, userId), symbol, year)}
    except Exception as exc:
        raise_service_error(exc, "Benchmark stats")
