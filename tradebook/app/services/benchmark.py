from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .. import analytics
from .cache import cache, get_benchmark_cache_key
from .deposits import deposits_for_user
from .market_data import get_market_data, normalize_symbol
from .net_equity import PRICE_LEAD_SECONDS, equity_rows, initial_cost

logger = logging.getLogger(__name__)

BENCHMARK_TTL = 5 * 60
DEFAULT_INITIAL_COST = 10000.0


def _initial_cost(user_pk: int) -> float:
    return initial_cost(user_pk) or DEFAULT_INITIAL_COST


def _base_date(year: Optional[int], records) -> Optional[int]:
    if year:
        return int(datetime(int(year) - 1, 12, 31, tzinfo=timezone.utc).timestamp())
    return records[0]["date"] if records else None


def ledger(user_pk: int, symbol: str, year: Optional[int] = None) -> Dict[str, Any]:
    """Hypothetical benchmark ledger for ``user_pk``; cached per user, symbol and year."""
    symbol = normalize_symbol(symbol)
    if not symbol:
        raise ValueError("Missing symbol")

    def _build() -> Dict[str, Any]:
        initial_cost = _initial_cost(user_pk)
        records = equity_rows(user_pk, year)
        base_date = _base_date(year, records)
        if base_date is None:
            return {"rows": [], "meta": {"symbol": symbol, "basePrice": None, "initialCost": initial_cost}}
        end = records[-1]["date"] if records else base_date
        prices = get_market_data(symbol, base_date - PRICE_LEAD_SECONDS, end)
        rows, base_price = analytics.benchmark_ledger(
            records, prices, deposits_for_user(user_pk), initial_cost, base_date
        )
        logger.debug("Built %s benchmark rows for user %s on %s", len(rows), user_pk, symbol)
        return {"rows": rows, "meta": {"symbol": symbol, "basePrice": base_price, "initialCost": initial_cost}}

    return cache.remember(get_benchmark_cache_key(user_pk, symbol, year), _build, ttl=BENCHMARK_TTL)


def stats(user_pk: int, symbol: str, year: Optional[int] = None) -> Optional[Dict[str, Any]]:
    symbol = normalize_symbol(symbol)
    if not symbol:
        raise ValueError("Missing symbol")
    records = equity_rows(user_pk, year)
    if not records:
        return None
    start, end = records[0]["date"], records[-1]["date"]
    prices = get_market_data(symbol, start, end)
    return analytics.benchmark_stats(prices, start, end, _initial_cost(user_pk), deposits_for_user(user_pk))
