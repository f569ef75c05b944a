import logging
from fastapi import APIRouter, Depends, HTTPException, Response

from ..deps import get_current_user
from ..errors import raise_service_error
from ..schemas import LoginPayload, ProfilePayload, RegisterPayload
from ..security import clear_session_cookie, set_session_cookie, sign_token, token_payload
from ..services import users

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


def _start_session(response: Response, user: dict) -> dict:
    payload = token_payload(user)
    set_session_cookie(response, sign_token(payload))
    return payload


@router.post("/login")
def login(payload: LoginPayload, response: Response):
    try:
        user = users.authenticate(payload.account, payload.password)
    except PermissionError as exc:
        raise HTTPException(status_code=401, detail=str(exc))
    except Exception as exc:
        raise_service_error(exc, "Login")
    logger.info("User %s signed in", user.get("user_id"))
    return {"success": True, "user": _start_session(response, user)}


@router.post("/register")
def register(payload: RegisterPayload, response: Response):
    try:
        user = users.register(payload.email, payload.password, payload.userId)
    except Exception as exc:
        raise_service_error(exc, "Register")
    return {"success": True, "user": _start_session(response, user)}


@router.post("/logout")
def logout(response: Response):
    clear_session_cookie(response)
    return {"success": True}


@router.get("/me")
def me(user: dict = Depends(get_current_user)):
    try:
        return users.get_profile(user["id"])
    except Exception as exc:
        raise_service_error(exc, "Profile")


@router.put("/me")
def update_me(payload: ProfilePayload, user: dict = Depends(get_current_user)):
    try:
        profile = users.update_profile(user["id"], payload.userId, payload.avatarUrl)
    except Exception as exc:
        raise_service_error(exc, "Profile update")
    return {"success": True, "user": profile}
