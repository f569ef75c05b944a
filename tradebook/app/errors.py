import logging
import sqlite3

from fastapi import HTTPException

logger = logging.getLogger(__name__)


class ConflictError(ValueError):
    """A uniqueness rule would be broken (email, user_id, code)."""


def raise_service_error(exc: Exception, context: str) -> None:
    """Map a service-layer exception onto the matching HTTP status."""
    detail = str(exc) or exc.__class__.__name__
    if isinstance(exc, HTTPException):
        raise exc
    if isinstance(exc, sqlite3.IntegrityError):
        logger.warning("%s rejected by constraint: %s", context, detail)
        if "UNIQUE" in detail:
            raise HTTPException(status_code=409, detail="Record already exists")
        raise HTTPException(status_code=400, detail="Invalid reference or missing value")
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=409, detail=detail)
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=400, detail=detail)
    if isinstance(exc, LookupError):
        raise HTTPException(status_code=404, detail=detail.strip("'\""))
    if isinstance(exc, PermissionError):
        raise HTTPException(status_code=403, detail=detail)
    logger.exception("%s error: %s", context, detail)
    raise HTTPException(status_code=500, detail="Internal Server Error")
