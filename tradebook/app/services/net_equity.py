"""Daily net-equity snapshots and the figures derived from them."""
from __future__ import annotations

import csv
import io
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from .. import analytics
from ..db import now_ts, rows_to_dicts, with_conn
from . import interest as interest_service
from .cache import cache
from .deposits import deposits_for_user
from .market_data import get_market_data

logger = logging.getLogger(__name__)

CSV_HEADER = ("Date", "NetEquity", "Interest")
# Price history fetched before the first snapshot so the benchmark start has a close.
PRICE_LEAD_SECONDS = 10 * analytics.DAY_SECONDS

_UPSERT_SQL = """
    INSERT INTO DAILY_NET_EQUITY (user_id, date, net_equity, cash_balance, management_fee, interest,
        year, created_at, updated_at)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(user_id, date) DO UPDATE SET
        net_equity=excluded.net_equity,
        cash_balance=COALESCE(excluded.cash_balance, DAILY_NET_EQUITY.cash_balance),
        management_fee=COALESCE(excluded.management_fee, DAILY_NET_EQUITY.management_fee),
        interest=COALESCE(excluded.interest, DAILY_NET_EQUITY.interest),
        year=excluded.year,
        updated_at=excluded.updated_at
"""


def parse_date(value: Union[int, float, str, None]) -> int:
    """Unix seconds or ``YYYY-MM-DD`` to midnight UTC of that day."""
    if value is None or value == "":
        raise ValueError("Missing date")
    if isinstance(value, (int, float)):
        return analytics.day_start(value)
    text = str(value).strip()
    if text.isdigit():
        return analytics.day_start(int(text))
    try:
        parsed = datetime.strptime(text[:10], "%Y-%m-%d")
    except ValueError:
        raise ValueError(f"Invalid date: {value}")
    return int(parsed.replace(tzinfo=timezone.utc).timestamp())


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def _row_params(user_pk: int, record: Dict[str, Any], ts: int) -> tuple:
    when = parse_date(record.get("date"))
    net_equity = record.get("net_equity")
    if net_equity is None or net_equity == "":
        raise ValueError("Missing net_equity")
    return (
        int(user_pk),
        when,
        float(net_equity),
        _optional_float(record.get("cash_balance")),
        _optional_float(record.get("management_fee")),
        _optional_float(record.get("interest")),
        analytics.year_of(when),
        ts,
        ts,
    )


def _invalidate(user_pk: Optional[int] = None) -> None:
    cache.delete_pattern(f"benchmark:{user_pk}:*" if user_pk else "benchmark:*")


def equity_rows(user_pk: int, year: Optional[int] = None) -> List[Dict[str, Any]]:
    clauses = ["user_id = ?"]
    params: List[Any] = [user_pk]
    if year:
        clauses.append("year = ?")
        params.append(year)

    def _run(conn):
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT id, date, net_equity, cash_balance, management_fee, interest
            FROM DAILY_NET_EQUITY WHERE {' AND '.join(clauses)}
            ORDER BY date ASC
            """,
            params,
        )
        return rows_to_dicts(cur.fetchall())

    return with_conn(_run)


def initial_cost(user_pk: int) -> float:
    def _run(conn):
        cur = conn.cursor()
        cur.execute("SELECT initial_cost FROM USERS WHERE id=?", (user_pk,))
        return cur.fetchone()

    row = with_conn(_run)
    if not row:
        raise LookupError("User not found")
    return float(row["initial_cost"] or 0)


def ledger(user_pk: int) -> List[Dict[str, Any]]:
    return analytics.equity_ledger(equity_rows(user_pk), deposits_for_user(user_pk))


def customer_cards() -> List[Dict[str, Any]]:
    """Card stats for every customer account that has snapshots."""

    def _run(conn):
        cur = conn.cursor()
        cur.execute("SELECT id, user_id, email FROM USERS WHERE role='customer' ORDER BY user_id")
        return rows_to_dicts(cur.fetchall())

    cards = []
    for customer in with_conn(_run):
        stats = analytics.card_stats(equity_rows(customer["id"]), deposits_for_user(customer["id"]))
        if stats is None:
            continue
        cards.append({"id": customer["id"], "user_id": customer["user_id"], "email": customer["email"], **stats})
    return cards


def upsert_record(payload: Dict[str, Any]) -> None:
    user_pk = payload.get("user_id")
    if not user_pk:
        raise ValueError("Missing user_id")
    params = _row_params(user_pk, payload, now_ts())

    def _run(conn):
        conn.execute(_UPSERT_SQL, params)
        conn.commit()

    with_conn(_run)
    _invalidate(user_pk)


def delete_record(record_id: int) -> None:
    def _run(conn):
        cur = conn.execute("DELETE FROM DAILY_NET_EQUITY WHERE id=?", (record_id,))
        conn.commit()
        return cur.rowcount

    if not with_conn(_run):
        raise LookupError("Record not found")
    _invalidate()


def import_records(body: Any, default_user: Optional[int] = None) -> int:
    records = body.get("records") if isinstance(body, dict) else body
    if not isinstance(records, list):
        raise ValueError("Expected a list of records")
    ts = now_ts()
    params = []
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            continue
        user_pk = record.get("user_id") or default_user
        try:
            params.append(_row_params(user_pk, record, ts))
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping net equity row %s: %s", index + 1, exc)

    def _run(conn):
        known = {row[0] for row in conn.execute("SELECT id FROM USERS")}
        rows = [p for p in params if p[0] in known]
        if len(rows) < len(params):
            logger.warning("Skipping %s net equity rows for unknown users", len(params) - len(rows))
        conn.executemany(_UPSERT_SQL, rows)
        conn.commit()
        return len(rows)

    count = with_conn(_run)
    _invalidate()
    logger.info("Imported %s of %s net equity rows", count, len(records))
    return count


def export_csv(user_pk: int) -> str:
    buf = io.StringIO()
    buf.write("\ufeff")
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for row in equity_rows(user_pk):
        day = datetime.fromtimestamp(row["date"], tz=timezone.utc).strftime("%Y-%m-%d")
        writer.writerow([day, row["net_equity"], row["interest"] or 0])
    return buf.getvalue()


def summary(user_pk: int, benchmark_start: Optional[int] = None) -> Dict[str, Any]:
    cost = initial_cost(user_pk)
    equity = equity_rows(user_pk)
    deposits = deposits_for_user(user_pk)
    qqq: List[Dict[str, Any]] = []
    qld: List[Dict[str, Any]] = []
    if equity:
        start = min(benchmark_start or equity[0]["date"], equity[0]["date"]) - PRICE_LEAD_SECONDS
        end = equity[-1]["date"]
        qqq = get_market_data("QQQ", start, end)
        qld = get_market_data("QLD", start, end)
    return analytics.user_twr(equity, deposits, cost, benchmark_start, qqq, qld)


def estimate_interest(user_pk: int, year: int, rate_map: Optional[Dict[str, float]] = None) -> List[Dict[str, Any]]:
    """Write estimated daily margin interest for ``year`` and roll it up by month."""
    if rate_map is None:
        try:
            rate_map = interest_service.fetch_fed_funds_rates(year)
        except interest_service.FredError as exc:
            logger.warning("Using default fed funds rate for %s: %s", year, exc)
            rate_map = {}

    rows = equity_rows(user_pk, year)
    monthly = {month: 0.0 for month in range(1, 13)}
    updates = []
    for row in rows:
        amount = interest_service.daily_interest(row["cash_balance"], row["date"], rate_map)
        updates.append((amount, now_ts(), row["id"]))
        monthly[datetime.fromtimestamp(row["date"], tz=timezone.utc).month] += amount

    def _run(conn):
        conn.executemany("UPDATE DAILY_NET_EQUITY SET interest=?, updated_at=? WHERE id=?", updates)
        conn.executemany(
            """
            INSERT INTO monthly_interest (user_id, year, month, interest, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id, year, month) DO UPDATE SET
                interest=excluded.interest, updated_at=excluded.updated_at
            """,
            [(user_pk, year, month, total, now_ts()) for month, total in monthly.items()],
        )
        conn.commit()

    with_conn(_run)
    cache.delete_pattern("users-selection:*")
    logger.info("Estimated interest for user %s over %s snapshots in %s", user_pk, len(rows), year)
    return [{"month": month, "interest": round(total, 2)} for month, total in monthly.items()]
