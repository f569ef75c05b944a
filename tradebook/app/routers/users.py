import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_current_user, is_staff, optional_user, require_staff
from ..errors import raise_service_error
from ..schemas import InitialCostPayload, MonthlyEntry, UserPayload
from ..services import users

router = APIRouter(prefix="/users", tags=["users"])
logger = logging.getLogger(__name__)


def _split(raw: Optional[str]) -> List[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


@router.get("")
def list_users(
    mode: Optional[str] = None,
    roles: Optional[str] = None,
    year: Optional[int] = None,
    userId: Optional[str] = None,
    user: Optional[dict] = Depends(optional_user),
):
    if mode == "selection":
        if not user:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return users.user_selection(_split(roles) or None, year, userId)
    if not user:
        raise HTTPException(status_code=403, detail="Forbidden")
    return users.list_users(user, year)


@router.post("")
def create_user(payload: UserPayload, user: dict = Depends(require_staff)):
    try:
        new_id = users.create_user(payload.model_dump())
    except Exception as exc:
        raise_service_error(exc, "Create user")
    logger.info("User %s created by %s", new_id, user["id"])
    return {"success": True, "id": new_id}


@router.put("")
def update_user(payload: UserPayload, user: dict = Depends(require_staff)):
    try:
        users.update_user(payload.model_dump(exclude_unset=True))
    except Exception as exc:
        raise_service_error(exc, "Update user")
    return {"success": True}


@router.get("/analysis")
def options_analysis(
    userId: Optional[int] = None,
    year: Optional[int] = None,
    user: dict = Depends(get_current_user),
):
    if userId is None or year is None:
        raise HTTPException(status_code=400, detail="Missing userId or year parameter")
    if not is_staff(user) and user["id"] != userId:
        raise HTTPException(status_code=403, detail="Forbidden")
    return {"success": True, "monthly_analysis": users.options_analysis(userId, year)}


@router.get("/{user_pk}")
def get_user(user_pk: int, user: dict = Depends(get_current_user)):
    if not is_staff(user) and user["id"] != user_pk:
        raise HTTPException(status_code=403, detail="Forbidden")
    try:
        return users.get_user(user_pk)
    except Exception as exc:
        raise_service_error(exc, "Get user")


@router.put("/{user_pk}")
def set_initial_cost(user_pk: int, payload: InitialCostPayload, user: dict = Depends(require_staff)):
    try:
        users.set_initial_cost(user_pk, payload.initial_cost)
    except Exception as exc:
        raise_service_error(exc, "Initial cost")
    return {"success": True}


@router.delete("/{user_pk}")
def delete_user(user_pk: int, mode: Optional[str] = None, user: dict = Depends(require_staff)):
    try:
        return users.delete_user(user_pk, user["id"], clear_records=mode == "clear_records")
    except Exception as exc:
        raise_service_error(exc, "Delete user")


@router.get("/{user_pk}/interest")
def get_interest(user_pk: int, year: Optional[int] = None, user: dict = Depends(require_staff)):
    try:
        return users.get_monthly("interest", user_pk, year)
    except Exception as exc:
        raise_service_error(exc, "Monthly interest")


@router.put("/{user_pk}/interest")
def put_interest(
    user_pk: int,
    entries: Optional[List[MonthlyEntry]] = None,
    year: Optional[int] = None,
    user: dict = Depends(require_staff),
):
    try:
        users.put_monthly("interest", user_pk, year, [e.model_dump() for e in entries] if entries is not None else None)
    except Exception as exc:
        raise_service_error(exc, "Monthly interest")
    return {"success": True}


@router.get("/{user_pk}/fees")
def get_fees(user_pk: int, year: Optional[int] = None, user: dict = Depends(require_staff)):
    try:
        return users.get_monthly("fees", user_pk, year)
    except Exception as exc:
        raise_service_error(exc, "Monthly fees")


@router.put("/{user_pk}/fees")
def put_fees(
    user_pk: int,
    entries: Optional[List[MonthlyEntry]] = None,
    year: Optional[int] = None,
    user: dict = Depends(require_staff),
):
    try:
        users.put_monthly("fees", user_pk, year, [e.model_dump() for e in entries] if entries is not None else None)
    except Exception as exc:
        raise_service_error(exc, "Monthly fees")
    return {"success": True}


@router.get("/{user_pk}/report")
def account_report(user_pk: int, year: Optional[int] = None, user: dict = Depends(require_staff)):
    try:
        return users.account_report(user_pk, year)
    except Exception as exc:
        raise_service_error(exc, "Account report")
