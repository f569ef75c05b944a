from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..analytics import DAY_SECONDS, day_start, year_of
from ..db import now_ts, rows_to_dicts, with_conn
from .codes import CODED_TABLES, backfill_codes, unique_code

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("symbol", "open_date", "open_price", "quantity")

_LIST_SQL = """
    SELECT s.*, u.user_id AS user_name,
        (SELECT mp.close_price FROM market_prices mp
         WHERE mp.symbol = s.symbol AND mp.date <= ?
         ORDER BY mp.date DESC LIMIT 1) AS current_market_price,
        (SELECT MAX(s2.open_date) FROM STOCK_TRADES s2
         WHERE s2.owner_id = s.owner_id AND s2.status = s.status AND s2.year = s.year) AS owner_latest_open
    FROM STOCK_TRADES s
    LEFT JOIN USERS u ON u.id = s.owner_id
"""


def list_trades(
    owner_id: Optional[int] = None,
    user_id: Optional[str] = None,
    year: Optional[int] = None,
    symbol: Optional[str] = None,
    today: Optional[int] = None,
) -> List[Dict[str, Any]]:
    clauses: List[str] = []
    params: List[Any] = [day_start(today or now_ts()) + DAY_SECONDS - 1]
    if owner_id is not None:
        clauses.append("s.owner_id = ?")
        params.append(owner_id)
    elif user_id:
        clauses.append("u.user_id = ?")
        params.append(user_id)
    if year:
        clauses.append("s.year = ?")
        params.append(year)
    if symbol:
        clauses.append("s.symbol = ?")
        params.append(symbol.strip().upper())
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

    def _run(conn):
        cur = conn.cursor()
        cur.execute(
            f"{_LIST_SQL}{where} ORDER BY s.status DESC, owner_latest_open DESC, s.open_date DESC, s.id DESC",
            params,
        )
        rows = rows_to_dicts(cur.fetchall())
        for row in rows:
            row.pop("owner_latest_open", None)
        return rows

    return with_conn(_run)


def _validated(payload: Dict[str, Any]) -> Dict[str, Any]:
    missing = [f for f in REQUIRED_FIELDS if payload.get(f) in (None, "")]
    if missing:
        raise ValueError(f"Missing required fields: {', '.join(missing)}")
    open_date = int(payload["open_date"])
    return {
        "symbol": str(payload["symbol"]).strip().upper(),
        "status": payload.get("status") or "Open",
        "open_date": open_date,
        "close_date": payload.get("close_date") or None,
        "open_price": float(payload["open_price"]),
        "close_price": payload.get("close_price"),
        "quantity": payload["quantity"],
        "user_id": payload.get("user_id"),
        "owner_id": payload.get("owner_id"),
        "year": int(payload.get("year") or year_of(open_date)),
    }


def create_trade(payload: Dict[str, Any]) -> Dict[str, Any]:
    values = _validated(payload)

    def _run(conn):
        cur = conn.cursor()
        code = unique_code(cur, "STOCK_TRADES")
        ts = now_ts()
        cols = list(values) + ["code", "created_at", "updated_at"]
        cur.execute(
            f"INSERT INTO STOCK_TRADES ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
            list(values.values()) + [code, ts, ts],
        )
        conn.commit()
        return cur.lastrowid, code

    trade_id, code = with_conn(_run)
    return {"id": trade_id, "code": code}


def update_trade(trade_id: int, payload: Dict[str, Any]) -> None:
    values = _validated(payload)
    if payload.get("owner_id") is None:
        values.pop("owner_id")
        values.pop("user_id")

    def _run(conn):
        cur = conn.cursor()
        cur.execute(
            f"UPDATE STOCK_TRADES SET {', '.join(f'{c} = ?' for c in values)}, updated_at = ? WHERE id = ?",
            list(values.values()) + [now_ts(), trade_id],
        )
        conn.commit()
        return cur.rowcount

    if not with_conn(_run):
        raise LookupError("Stock trade not found")


def delete_trade(trade_id: int) -> None:
    def _run(conn):
        cur = conn.execute("DELETE FROM STOCK_TRADES WHERE id=?", (trade_id,))
        conn.commit()
        return cur.rowcount

    if not with_conn(_run):
        raise LookupError("Stock trade not found")


def backfill_all_codes() -> Dict[str, int]:
    def _run(conn):
        cur = conn.cursor()
        counts = {table: backfill_codes(cur, table) for table in CODED_TABLES}
        conn.commit()
        return counts

    counts = with_conn(_run)
    logger.info("Backfilled codes: %s", counts)
    return {"stocks": counts["STOCK_TRADES"], "options": counts["OPTIONS"]}
