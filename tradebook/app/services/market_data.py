from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..db import with_conn
from . import stooq
from .cache import cache, get_market_data_cache_key
from .trading_calendar import trading_days_between

logger = logging.getLogger(__name__)

MARKET_DATA_TTL = 60 * 60
BULK_CHUNK = 100
FILL_LOOKBACK_DAYS = 100

_UPSERT_SQL = """
    INSERT INTO market_prices (symbol, date, close_price)
    VALUES (?, ?, ?)
    ON CONFLICT(symbol, date) DO UPDATE SET close_price=excluded.close_price
"""


def _utc_midnight(day: date) -> int:
    return int(datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp())


def normalize_symbol(symbol: Optional[str]) -> str:
    return (symbol or "").strip().upper()


def get_market_data(symbol: str, start: int, end: int) -> List[Dict[str, Any]]:
    """Stored closes for ``symbol`` in ``[start, end]``, oldest first."""
    symbol = normalize_symbol(symbol)

    def _load():
        def _run(conn):
            cur = conn.cursor()
            cur.execute(
                """
                SELECT date, close_price AS close FROM market_prices
                WHERE symbol=? AND date>=? AND date<=?
                ORDER BY date ASC
                """,
                (symbol, int(start), int(end)),
            )
            return [dict(r) for r in cur.fetchall()]

        return with_conn(_run)

    return cache.remember(get_market_data_cache_key(symbol, start, end), _load, ttl=MARKET_DATA_TTL)


def clear_market_data_cache(symbol: Optional[str] = None) -> int:
    if symbol:
        return cache.delete_pattern(f"market:{normalize_symbol(symbol)}:*")
    return cache.delete_pattern("market:*")


def upsert_price(symbol: str, when: int, price: float) -> None:
    symbol = normalize_symbol(symbol)
    if not symbol:
        raise ValueError("Missing symbol")
    if price is None or float(price) <= 0:
        raise ValueError("Price must be > 0")

    def _run(conn):
        conn.execute(_UPSERT_SQL, (symbol, int(when), float(price)))
        conn.commit()

    with_conn(_run)
    clear_market_data_cache(symbol)


def delete_price(symbol: str, when: int) -> int:
    symbol = normalize_symbol(symbol)

    def _run(conn):
        cur = conn.execute("DELETE FROM market_prices WHERE symbol=? AND date=?", (symbol, int(when)))
        conn.commit()
        return cur.rowcount

    deleted = with_conn(_run)
    clear_market_data_cache(symbol)
    return deleted


def delete_symbol(symbol: str) -> int:
    symbol = normalize_symbol(symbol)

    def _run(conn):
        cur = conn.execute("DELETE FROM market_prices WHERE symbol=?", (symbol,))
        conn.commit()
        return cur.rowcount

    deleted = with_conn(_run)
    clear_market_data_cache(symbol)
    logger.info("Deleted %s market prices for %s", deleted, symbol)
    return deleted


def bulk_upsert(rows: Iterable[Dict[str, Any]]) -> int:
    """Upsert ``{symbol, date, price}`` rows in chunks; returns rows written."""
    cleaned = []
    for row in rows:
        symbol = normalize_symbol(row.get("symbol"))
        try:
            when = int(row.get("date"))
            price = float(row.get("price"))
        except (TypeError, ValueError):
            logger.warning("Skipping malformed market price row: %s", row)
            continue
        if not symbol or price <= 0:
            continue
        cleaned.append((symbol, when, price))

    def _run(conn):
        for offset in range(0, len(cleaned), BULK_CHUNK):
            conn.executemany(_UPSERT_SQL, cleaned[offset : offset + BULK_CHUNK])
            conn.commit()
        return len(cleaned)

    written = with_conn(_run)
    for symbol in {row[0] for row in cleaned}:
        clear_market_data_cache(symbol)
    return written


def user_for_api_key(api_key: Optional[str]) -> Optional[Dict[str, Any]]:
    if not api_key:
        return None

    def _run(conn):
        cur = conn.cursor()
        cur.execute("SELECT id, user_id, role FROM USERS WHERE api_key=?", (api_key,))
        row = cur.fetchone()
        return dict(row) if row else None

    return with_conn(_run)


def latest_date(symbol: str) -> Optional[int]:
    def _run(conn):
        cur = conn.cursor()
        cur.execute("SELECT MAX(date) FROM market_prices WHERE symbol=?", (normalize_symbol(symbol),))
        row = cur.fetchone()
        return row[0] if row and row[0] is not None else None

    return with_conn(_run)


def fill_gaps(
    symbol: str = "QQQ",
    today: Optional[date] = None,
    fetch_history: Optional[Callable[..., List[Dict[str, Any]]]] = None,
) -> Dict[str, Any]:
    """Fetch closes for trading days missing since the last stored price."""
    symbol = normalize_symbol(symbol) or "QQQ"
    today = today or datetime.now(timezone.utc).date()
    latest = latest_date(symbol)
    if latest is not None:
        start = datetime.fromtimestamp(latest, tz=timezone.utc).date() + timedelta(days=1)
    else:
        start = today - timedelta(days=FILL_LOOKBACK_DAYS)

    missing = trading_days_between(start, today)
    if not missing:
        return {"success": True, "symbol": symbol, "totalMissingDays": 0, "filled": 0}

    history = (fetch_history or stooq.get_history)(symbol, start.isoformat())
    closes = {row["date"]: row["close"] for row in history}
    rows = [
        {"symbol": symbol, "date": _utc_midnight(day), "price": closes[day.isoformat()]}
        for day in missing
        if day.isoformat() in closes
    ]
    filled = bulk_upsert(rows) if rows else 0
    if filled:
        cache.delete_pattern(f"benchmark:*:{symbol}:*")
    logger.info("Filled %s of %s missing trading days for %s", filled, len(missing), symbol)
    return {"success": True, "symbol": symbol, "totalMissingDays": len(missing), "filled": filled}
