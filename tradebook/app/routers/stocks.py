import logging
from typing import Optional
from fastapi import APIRouter, Depends

from ..deps import get_current_user, require_roles, require_staff
from ..errors import raise_service_error
from ..schemas import StockTradePayload
from ..services import stocks

router = APIRouter(prefix="/stocks", tags=["stocks"])
logger = logging.getLogger(__name__)

require_writer = require_roles("admin", "manager", "trader")


@router.get("")
def list_trades(
    userId: Optional[str] = None,
    ownerId: Optional[int] = None,
    year: Optional[int] = None,
    symbol: Optional[str] = None,
    user: dict = Depends(get_current_user),
):
    if user.get("role") == "customer":
        ownerId, userId = user["id"], None
    return stocks.list_trades(ownerId, userId, year, symbol)


@router.post("")
def create_trade(payload: StockTradePayload, user: dict = Depends(require_writer)):
    try:
        created = stocks.create_trade(payload.model_dump())
    except Exception as exc:
        raise_service_error(exc, "Create stock trade")
    return {"success": True, **created}


@router.put("/{trade_id}")
def update_trade(trade_id: int, payload: StockTradePayload, user: dict = Depends(require_writer)):
    try:
        stocks.update_trade(trade_id, payload.model_dump())
    except Exception as exc:
        raise_service_error(exc, "Update stock trade")
    return {"success": True}


@router.delete("/{trade_id}")
def delete_trade(trade_id: int, user: dict = Depends(require_writer)):
    try:
        stocks.delete_trade(trade_id)
    except Exception as exc:
        raise_service_error(exc, "Delete stock trade")
    return {"success": True}


@router.post("/backfill-codes")
def backfill_codes(user: dict = Depends(require_staff)):
    try:
        counts = stocks.backfill_all_codes()
    except Exception as exc:
        raise_service_error(exc, "Backfill codes")
    return {"success": True, **counts}
