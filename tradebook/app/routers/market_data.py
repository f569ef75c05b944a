import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request

from ..analytics import DAY_SECONDS, day_start
from ..db import now_ts
from ..deps import get_current_user, require_staff
from ..errors import raise_service_error
from ..schemas import BulkPricesPayload, FillGapsPayload, MarketPricePayload
from ..services import market_data
from ..services.cache import cache

router = APIRouter(prefix="/market-data", tags=["market-data"])
logger = logging.getLogger(__name__)


def _api_key(request: Request, api_key: Optional[str]) -> Optional[str]:
    if api_key:
        return api_key
    header = request.headers.get("Authorization") or ""
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return None


@router.get("")
def get_prices(symbol: str, start: int = 0, end: Optional[int] = None, user: dict = Depends(get_current_user)):
    if end is None:
        end = day_start(now_ts()) + DAY_SECONDS - 1
    return market_data.get_market_data(symbol, start, end)


@router.post("")
def upsert_price(payload: MarketPricePayload, user: dict = Depends(require_staff)):
    if payload.date is None or payload.price is None:
        raise HTTPException(status_code=400, detail="Missing date or price")
    try:
        market_data.upsert_price(payload.symbol, payload.date, payload.price)
    except Exception as exc:
        raise_service_error(exc, "Save market price")
    return {"success": True}


@router.delete("")
def delete_prices(
    symbol: Optional[str] = None,
    date: Optional[int] = None,
    mode: Optional[str] = None,
    user: dict = Depends(require_staff),
):
    if not symbol:
        raise HTTPException(status_code=400, detail="Missing symbol")
    if mode == "all":
        return {"success": True, "deleted": market_data.delete_symbol(symbol)}
    if date is None:
        raise HTTPException(status_code=400, detail="Missing date")
    return {"success": True, "deleted": market_data.delete_price(symbol, date)}


@router.post("/bulk")
def bulk_upsert(payload: BulkPricesPayload, request: Request, apiKey: Optional[str] = None):
    owner = market_data.user_for_api_key(_api_key(request, apiKey))
    if not owner:
        raise HTTPException(status_code=401, detail="Invalid API key")
    if not payload.rows:
        raise HTTPException(status_code=400, detail="No rows provided")
    try:
        inserted = market_data.bulk_upsert(payload.rows)
    except Exception as exc:
        raise_service_error(exc, "Bulk market prices")
    logger.info("User %s uploaded %s market prices", owner.get("user_id"), inserted)
    return {"success": True, "inserted": inserted}


@router.post("/fill-gaps")
def fill_gaps(payload: Optional[FillGapsPayload] = None, user: dict = Depends(get_current_user)):
    symbol = payload.symbol if payload else "QQQ"
    try:
        return market_data.fill_gaps(symbol)
    except Exception as exc:
        raise_service_error(exc, "Fill gaps")


@router.post("/clear-cache")
def clear_cache(user: dict = Depends(require_staff)):
    cleared = market_data.clear_market_data_cache()
    for pattern in ("benchmark:*", "users-selection:*"):
        cleared += cache.delete_pattern(pattern)
    return {"success": True, "cleared": cleared}
