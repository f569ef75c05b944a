import logging
from datetime import datetime, timezone
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_current_user, require_roles
from ..errors import raise_service_error
from ..schemas import OptionImport, OptionPayload
from ..services import options

router = APIRouter(prefix="/options", tags=["options"])
logger = logging.getLogger(__name__)

require_writer = require_roles("admin", "manager", "trader")


@router.get("")
def list_options(
    ownerId: Optional[int] = None,
    userId: Optional[str] = None,
    year: Optional[int] = None,
    status: Optional[str] = None,
    user: dict = Depends(get_current_user),
):
    if user.get("role") == "customer":
        ownerId, userId = user["id"], None
    return options.list_options(ownerId, userId, year, status)


@router.post("")
def create_option(payload: OptionPayload, user: dict = Depends(require_writer)):
    try:
        created = options.create_option(payload.model_dump(exclude_unset=True))
    except Exception as exc:
        raise_service_error(exc, "Create option")
    return {"success": True, **created}


@router.put("")
def update_option(payload: OptionPayload, user: dict = Depends(require_writer)):
    try:
        options.update_option(payload.model_dump(exclude_unset=True))
    except Exception as exc:
        raise_service_error(exc, "Update option")
    return {"success": True}


@router.delete("/{option_id}")
def delete_option(option_id: str, user: dict = Depends(require_writer)):
    try:
        option_pk = int(option_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid option id")
    try:
        options.delete_option(option_pk)
    except Exception as exc:
        raise_service_error(exc, "Delete option")
    return {"success": True}


@router.post("/import")
def import_options(payload: OptionImport, user: dict = Depends(require_writer)):
    try:
        return options.import_options(payload.options)
    except Exception as exc:
        raise_service_error(exc, "Import options")


@router.get("/export")
def export_options(ownerId: Optional[int] = None, year: Optional[int] = None, user: dict = Depends(get_current_user)):
    if user.get("role") == "customer":
        ownerId = user["id"]
    if not ownerId:
        raise HTTPException(status_code=400, detail="Missing ownerId")
    rows = options.export_options(ownerId, year)
    return {
        "options": rows,
        "exportDate": datetime.now(timezone.utc).isoformat(),
        "count": len(rows),
        "ownerId": ownerId,
        "year": year,
    }
