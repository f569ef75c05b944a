import logging
from typing import Any, Optional
from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import Response

from ..analytics import year_of
from ..db import now_ts
from ..deps import get_current_user, is_staff, require_staff
from ..errors import raise_service_error
from ..schemas import NetEquityPayload
from ..services import net_equity

router = APIRouter(prefix="/net-equity", tags=["net-equity"])
logger = logging.getLogger(__name__)


def _target_user(user: dict, requested: Optional[int]) -> Optional[int]:
    if user.get("role") == "customer":
        if requested is not None and requested != user["id"]:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user["id"]
    if requested is None and not is_staff(user):
        return user["id"]
    return requested


@router.get("")
def list_net_equity(userId: Optional[int] = None, user: dict = Depends(get_current_user)):
    target = _target_user(user, userId)
    try:
        if target is None:
            return net_equity.customer_cards()
        return net_equity.ledger(target)
    except Exception as exc:
        raise_service_error(exc, "Net equity")


@router.post("")
def upsert_net_equity(payload: NetEquityPayload, user: dict = Depends(require_staff)):
    try:
        net_equity.upsert_record(payload.model_dump())
    except Exception as exc:
        raise_service_error(exc, "Save net equity")
    return {"success": True}


@router.delete("/{record_id}")
def delete_net_equity(record_id: int, user: dict = Depends(require_staff)):
    try:
        net_equity.delete_record(record_id)
    except Exception as exc:
        raise_service_error(exc, "Delete net equity")
    return {"success": True}


@router.post("/import")
def import_net_equity(body: Any = Body(None), userId: Optional[int] = None, user: dict = Depends(require_staff)):
    try:
        count = net_equity.import_records(body, default_user=userId)
    except Exception as exc:
        raise_service_error(exc, "Import net equity")
    return {"success": True, "count": count}


@router.get("/export")
def export_net_equity(userId: Optional[int] = None, user: dict = Depends(get_current_user)):
    target = _target_user(user, userId)
    if target is None:
        raise HTTPException(status_code=400, detail="Missing userId")
    content = net_equity.export_csv(target)
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="net_equity_{target}.csv"'},
    )


@router.get("/{user_pk}/summary")
def summary(user_pk: int, benchmarkStart: Optional[int] = None, user: dict = Depends(get_current_user)):
    target = _target_user(user, user_pk)
    try:
        return net_equity.summary(target, benchmarkStart)
    except Exception as exc:
        raise_service_error(exc, "Net equity summary")


@router.post("/{user_pk}/estimate-interest")
def estimate_interest(user_pk: int, year: Optional[int] = None, user: dict = Depends(require_staff)):
    try:
        months = net_equity.estimate_interest(user_pk, year or year_of(now_ts()))
    except Exception as exc:
        raise_service_error(exc, "Estimate interest")
    return {"success": True, "months": months}
