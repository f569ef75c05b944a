from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from ..analytics import year_bounds, year_of
from ..db import now_ts, rows_to_dicts, with_conn
from .cache import cache

logger = logging.getLogger(__name__)

TRANSACTION_TYPES = ("deposit", "withdrawal")


def _invalidate(user_pk: Optional[int] = None) -> None:
    cache.delete_pattern(f"benchmark:{user_pk}:*" if user_pk else "benchmark:*")


def list_deposits(
    user_ids: Optional[Iterable[int]] = None,
    year: Optional[int] = None,
    transaction_type: Optional[str] = None,
    deposit_type: Optional[str] = None,
) -> List[Dict[str, Any]]:
    clauses: List[str] = []
    params: List[Any] = []
    ids = list(user_ids or [])
    if ids:
        clauses.append(f"d.user_id IN ({', '.join('?' for _ in ids)})")
        params.extend(ids)
    if year:
        start, end = year_bounds(int(year))
        clauses.append("d.deposit_date BETWEEN ? AND ?")
        params.extend([start, end])
    if transaction_type:
        clauses.append("d.transaction_type = ?")
        params.append(transaction_type)
    if deposit_type:
        clauses.append("d.deposit_type = ?")
        params.append(deposit_type)
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

    def _run(conn):
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT d.*, u.user_id AS depositor_user_id, u.email AS depositor_email
            FROM DEPOSITS d
            LEFT JOIN USERS u ON u.id = d.user_id
            {where}
            ORDER BY d.deposit_date DESC, d.id DESC
            """,
            params,
        )
        return rows_to_dicts(cur.fetchall())

    return with_conn(_run)


def deposits_for_user(user_pk: int) -> List[Dict[str, Any]]:
    """Raw cash flows for one account, oldest first."""

    def _run(conn):
        cur = conn.cursor()
        cur.execute(
            "SELECT deposit_date, amount, transaction_type FROM DEPOSITS WHERE user_id=? ORDER BY deposit_date",
            (user_pk,),
        )
        return rows_to_dicts(cur.fetchall())

    return with_conn(_run)


def _validated(payload: Dict[str, Any]) -> Dict[str, Any]:
    missing = [f for f in ("deposit_date", "user_id", "amount") if payload.get(f) in (None, "")]
    if missing:
        raise ValueError(f"Missing required fields: {', '.join(missing)}")
    try:
        amount = float(payload["amount"])
        deposit_date = int(payload["deposit_date"])
        user_pk = int(payload["user_id"])
    except (TypeError, ValueError):
        raise ValueError("Invalid deposit values")
    if amount <= 0:
        raise ValueError("Amount must be positive")
    transaction_type = payload.get("transaction_type") or "deposit"
    if transaction_type not in TRANSACTION_TYPES:
        raise ValueError("transaction_type must be deposit or withdrawal")
    return {
        "deposit_date": deposit_date,
        "user_id": user_pk,
        "amount": amount,
        "year": year_of(deposit_date),
        "note": payload.get("note"),
        "deposit_type": payload.get("deposit_type") or "cash",
        "transaction_type": transaction_type,
    }


def create_deposit(payload: Dict[str, Any], actor_pk: Optional[int] = None) -> int:
    values = _validated(payload)

    def _run(conn):
        cur = conn.cursor()
        cur.execute("SELECT 1 FROM USERS WHERE id=?", (values["user_id"],))
        if not cur.fetchone():
            raise LookupError("User not found")
        ts = now_ts()
        cur.execute(
            """
            INSERT INTO DEPOSITS (deposit_date, user_id, amount, year, note, deposit_type,
                transaction_type, created_by, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                values["deposit_date"],
                values["user_id"],
                values["amount"],
                values["year"],
                values["note"],
                values["deposit_type"],
                values["transaction_type"],
                actor_pk,
                ts,
                ts,
            ),
        )
        conn.commit()
        return cur.lastrowid

    deposit_id = with_conn(_run)
    _invalidate(values["user_id"])
    return deposit_id


def update_deposit(deposit_id: int, payload: Dict[str, Any]) -> None:
    values = _validated(payload)

    def _run(conn):
        cur = conn.cursor()
        cur.execute(
            """
            UPDATE DEPOSITS SET deposit_date=?, user_id=?, amount=?, year=?, note=?,
                deposit_type=?, transaction_type=?, updated_at=?
            WHERE id=?
            """,
            (
                values["deposit_date"],
                values["user_id"],
                values["amount"],
                values["year"],
                values["note"],
                values["deposit_type"],
                values["transaction_type"],
                now_ts(),
                deposit_id,
            ),
        )
        conn.commit()
        return cur.rowcount

    if not with_conn(_run):
        raise LookupError("Deposit not found")
    _invalidate()


def delete_deposit(deposit_id: int) -> None:
    def _run(conn):
        cur = conn.execute("DELETE FROM DEPOSITS WHERE id=?", (deposit_id,))
        conn.commit()
        return cur.rowcount

    if not with_conn(_run):
        raise LookupError("Deposit not found")
    _invalidate()


def _resolve_depositor(cur, row: Dict[str, Any]) -> Optional[int]:
    """Email first, then the login user_id, then the numeric primary key."""
    lookups = (
        ("email", row.get("depositor_email")),
        ("user_id", row.get("depositor_user_id")),
        ("id", row.get("user_id")),
    )
    for column, value in lookups:
        if value in (None, ""):
            continue
        cur.execute(f"SELECT id FROM USERS WHERE {column}=? ORDER BY year DESC LIMIT 1", (value,))
        found = cur.fetchone()
        if found:
            return found["id"]
    return None


def import_deposits(rows: Any, actor_pk: Optional[int] = None) -> Dict[str, Any]:
    """Insert exported deposit rows, re-linking each to a local account."""
    if not isinstance(rows, list):
        raise ValueError("Invalid data format: expected a list of deposits")

    def _run(conn):
        cur = conn.cursor()
        imported = 0
        skipped = 0
        touched = set()
        for index, row in enumerate(rows):
            if not isinstance(row, dict) or row.get("deposit_date") in (None, "") or row.get("amount") is None:
                skipped += 1
                continue
            user_pk = _resolve_depositor(cur, row)
            if user_pk is None:
                logger.warning(
                    "Deposit import row %s skipped: user not found (id=%s, email=%s)",
                    index + 1,
                    row.get("user_id"),
                    row.get("depositor_email"),
                )
                skipped += 1
                continue
            try:
                values = _validated({**row, "user_id": user_pk})
                ts = now_ts()
                cur.execute(
                    """
                    INSERT INTO DEPOSITS (deposit_date, user_id, amount, year, note, deposit_type,
                        transaction_type, created_by, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        values["deposit_date"],
                        user_pk,
                        values["amount"],
                        values["year"],
                        values["note"],
                        values["deposit_type"],
                        values["transaction_type"],
                        actor_pk,
                        ts,
                        ts,
                    ),
                )
                conn.commit()
                imported += 1
                touched.add(user_pk)
            except Exception as exc:
                conn.rollback()
                logger.warning("Deposit import row %s failed: %s", index + 1, exc)
                skipped += 1
        return imported, skipped, touched

    imported, skipped, touched = with_conn(_run)
    for user_pk in touched:
        _invalidate(user_pk)
    logger.info("Deposit import: %s imported, %s skipped of %s", imported, skipped, len(rows))
    return {"success": True, "imported": imported, "skipped": skipped}
