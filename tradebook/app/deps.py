"""Request authentication dependencies."""
import logging
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status

from .config import settings
from .security import verify_token

logger = logging.getLogger(__name__)

ROLES = ("admin", "manager", "trader", "customer")
STAFF_ROLES = ("admin", "manager")


def is_staff(user: Optional[Dict[str, Any]]) -> bool:
    return bool(user) and user.get("role") in STAFF_ROLES


def optional_user(request: Request) -> Optional[Dict[str, Any]]:
    return verify_token(request.cookies.get(settings.cookie_name))


def get_current_user(request: Request) -> Dict[str, Any]:
    token = request.cookies.get(settings.cookie_name)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    payload = verify_token(token)
    if not payload or "id" not in payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return payload


def require_roles(*roles: str):
    """Dependency factory: the caller must hold one of ``roles``."""

    def _check(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user.get("role") not in roles:
            logger.info("Role %s denied (needs one of %s)", user.get("role"), ",".join(roles))
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return user

    return _check


require_staff = require_roles(*STAFF_ROLES)
