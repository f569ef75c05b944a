import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_current_user, is_staff, require_staff
from ..errors import raise_service_error
from ..schemas import DepositImport, DepositPayload
from ..services import deposits

router = APIRouter(prefix="/deposits", tags=["deposits"])
logger = logging.getLogger(__name__)


def _user_ids(raw: Optional[str]) -> List[int]:
    try:
        return [int(part) for part in (raw or "").split(",") if part.strip()]
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid userId")


@router.get("")
def list_deposits(
    year: Optional[int] = None,
    userId: Optional[str] = None,
    transaction_type: Optional[str] = None,
    deposit_type: Optional[str] = None,
    user: dict = Depends(get_current_user),
):
    ids = _user_ids(userId) if is_staff(user) else [user["id"]]
    return deposits.list_deposits(ids, year, transaction_type, deposit_type)


@router.get("/export")
def export_deposits(
    year: Optional[int] = None,
    userId: Optional[str] = None,
    transaction_type: Optional[str] = None,
    deposit_type: Optional[str] = None,
    user: dict = Depends(require_staff),
):
    rows = deposits.list_deposits(_user_ids(userId), year, transaction_type, deposit_type)
    return {"deposits": rows, "count": len(rows)}


@router.post("")
def create_deposit(payload: DepositPayload, user: dict = Depends(require_staff)):
    try:
        deposit_id = deposits.create_deposit(payload.model_dump(), actor_pk=user["id"])
    except Exception as exc:
        raise_service_error(exc, "Create deposit")
    return {"success": True, "id": deposit_id}


@router.post("/import")
def import_deposits(payload: DepositImport, user: dict = Depends(require_staff)):
    try:
        return deposits.import_deposits(payload.deposits, actor_pk=user["id"])
    except Exception as exc:
        raise_service_error(exc, "Import deposits")


@router.put("/{deposit_id}")
def update_deposit(deposit_id: int, payload: DepositPayload, user: dict = Depends(require_staff)):
    try:
        deposits.update_deposit(deposit_id, payload.model_dump())
    except Exception as exc:
        raise_service_error(exc, "Update deposit")
    return {"success": True}


@router.delete("/{deposit_id}")
def delete_deposit(deposit_id: int, user: dict = Depends(require_staff)):
    try:
        deposits.delete_deposit(deposit_id)
    except Exception as exc:
        raise_service_error(exc, "Delete deposit")
    return {"success": True}
