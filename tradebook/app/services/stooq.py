from __future__ import annotations

import csv
import logging
import time
from datetime import datetime
from io import StringIO
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings

logger = logging.getLogger(__name__)

HISTORY_URL = "https://stooq.com/q/d/l/"


def _to_stooq_symbol(symbol: str) -> str:
    base = symbol.strip().lower()
    if not base:
        return base
    if base.endswith(".us"):
        return base
    return f"{base}.us"


_RATE_LIMIT_UNTIL = 0.0


def _rate_limited() -> bool:
    return time.time() < _RATE_LIMIT_UNTIL


def _mark_rate_limited(window_sec: int = 3600) -> None:
    global _RATE_LIMIT_UNTIL
    until = time.time() + float(window_sec)
    if until > _RATE_LIMIT_UNTIL:
        _RATE_LIMIT_UNTIL = until
        logger.warning("Stooq rate limit hit; pausing history requests for %ss", window_sec)


def _reset_rate_limit() -> None:
    global _RATE_LIMIT_UNTIL
    _RATE_LIMIT_UNTIL = 0.0


def _looks_rate_limited(text: str) -> bool:
    return "exceeded the daily hits limit" in (text or "").lower()


def parse_history_csv(text: str, start_date: Optional[str] = None) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    start_dt = None
    if start_date:
        try:
            start_dt = datetime.strptime(start_date, "%Y-%m-%d").date()
        except ValueError:
            start_dt = None
    for row in csv.DictReader(StringIO(text)):
        date_str = row.get("Date") or row.get("date")
        close_str = row.get("Close") or row.get("close")
        if not date_str or not close_str:
            continue
        try:
            d = datetime.strptime(date_str, "%Y-%m-%d").date()
            close = float(close_str)
        except ValueError:
            continue
        if close <= 0:
            continue
        if start_dt and d < start_dt:
            continue
        rows.append({"date": d.isoformat(), "close": close})
    return rows


def get_history(symbol: str, start_date: Optional[str] = None) -> List[Dict[str, Any]]:
    """Daily closes for ``symbol`` as ``[{"date": "YYYY-MM-DD", "close": float}]``.

    Returns an empty list when the provider is unreachable or throttling us.
    """
    stooq_symbol = _to_stooq_symbol(symbol)
    if not stooq_symbol:
        return []
    if _rate_limited():
        return []
    params = {"s": stooq_symbol, "i": "d"}
    if start_date:
        params["d1"] = start_date.replace("-", "")
    try:
        with httpx.Client(timeout=settings.market.timeout) as client:
            resp = client.get(HISTORY_URL, params=params)
            if resp.status_code in {403, 429}:
                _mark_rate_limited()
                return []
            resp.raise_for_status()
            text = resp.text
    except httpx.HTTPStatusError:
        _mark_rate_limited()
        return []
    except httpx.HTTPError as exc:
        logger.warning("Stooq history request failed for %s: %s", symbol, exc)
        return []

    if _looks_rate_limited(text):
        _mark_rate_limited()
        return []

    return parse_history_csv(text, start_date)
