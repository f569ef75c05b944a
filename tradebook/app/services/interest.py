"""Estimated margin interest from the monthly federal funds rate.

Rates come from the FRED observations API (series FEDFUNDS by default) and are
cached per calendar year for the life of the process.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Dict

import httpx

from ..config import settings

logger = logging.getLogger(__name__)

DEFAULT_FED_RATE = 4.33
LOOKBACK_MONTHS = 6
DAY_COUNT = 360

_RATE_CACHE: Dict[int, Dict[str, float]] = {}
_RATE_LOCK = threading.Lock()


class FredError(RuntimeError):
    pass


def _clear_rate_cache() -> None:
    with _RATE_LOCK:
        _RATE_CACHE.clear()


def fetch_fed_funds_rates(year: int) -> Dict[str, float]:
    """Return ``{"YYYY-MM": rate_percent}`` for ``year`` plus the prior December."""
    with _RATE_LOCK:
        cached = _RATE_CACHE.get(year)
    if cached is not None:
        return cached

    params = {
        "series_id": settings.fred.series_id,
        "api_key": settings.fred.api_key,
        "observation_start": f"{year - 1}-12-01",
        "observation_end": f"{year}-12-31",
        "file_type": "json",
    }
    try:
        with httpx.Client(timeout=settings.fred.timeout) as client:
            resp = client.get(settings.fred.base_url, params=params)
    except httpx.HTTPError as exc:
        raise FredError(f"FRED request failed: {exc}") from exc
    if resp.status_code >= 400:
        raise FredError(f"FRED API error: {resp.status_code} {resp.reason_phrase}")

    rate_map: Dict[str, float] = {}
    for obs in resp.json().get("observations", []):
        try:
            rate = float(obs.get("value"))
        except (TypeError, ValueError):
            continue
        rate_map[str(obs.get("date", ""))[:7]] = rate

    logger.info("Loaded %s FRED observations for %s", len(rate_map), year)
    with _RATE_LOCK:
        _RATE_CACHE[year] = rate_map
    return rate_map


def lookup_rate(rate_map: Dict[str, float], when: int) -> float:
    """Rate for the month of ``when``, walking back up to six months."""
    dt = datetime.fromtimestamp(int(when), tz=timezone.utc)
    year, month = dt.year, dt.month
    for _ in range(LOOKBACK_MONTHS + 1):
        key = f"{year}-{month:02d}"
        if key in rate_map:
            return rate_map[key]
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    return DEFAULT_FED_RATE


def ib_pro_spread(loan_amount: float) -> float:
    """Blended spread (percent) over the benchmark rate by loan size."""
    if loan_amount <= 100_000:
        return 1.5
    if loan_amount <= 1_000_000:
        return 1.0
    if loan_amount <= 3_000_000:
        return 0.5
    return 0.25


def daily_interest(cash_balance: float, when: int, rate_map: Dict[str, float]) -> float:
    """Interest charged for one day; negative when the account borrows."""
    if cash_balance is None or cash_balance >= 0:
        return 0.0
    loan = abs(cash_balance)
    annual_rate = (lookup_rate(rate_map, when) + ib_pro_spread(loan)) / 100
    return -(loan * annual_rate / DAY_COUNT)
