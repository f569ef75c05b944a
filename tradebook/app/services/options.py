from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..analytics import year_of
from ..db import now_ts, rows_to_dicts, with_conn
from .cache import cache
from .codes import unique_code

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("open_date", "quantity", "underlying", "type", "strike_price")
IMPORT_REQUIRED_FIELDS = ("status",) + REQUIRED_FIELDS + ("owner_id",)
_MISSING = object()

_COLUMNS = (
    "status",
    "operation",
    "open_date",
    "to_date",
    "settlement_date",
    "quantity",
    "underlying",
    "type",
    "strike_price",
    "collateral",
    "premium",
    "final_profit",
    "profit_percent",
    "delta",
    "iv",
    "capital_efficiency",
    "user_id",
    "owner_id",
    "year",
)


def profit_percent(payload: Dict[str, Any]) -> Optional[float]:
    """``final_profit / premium`` when both are known; explicit null clears it."""
    final_profit = payload.get("final_profit", _MISSING)
    premium = payload.get("premium")
    if final_profit is None:
        return None
    if final_profit is not _MISSING and premium:
        return float(final_profit) / float(premium)
    return payload.get("profit_percent")


def _missing(payload: Dict[str, Any], fields) -> List[str]:
    return [f for f in fields if payload.get(f) in (None, "", 0)]


def _row_values(payload: Dict[str, Any]) -> Dict[str, Any]:
    open_date = int(payload["open_date"])
    return {
        "status": payload.get("status") or "Open",
        "operation": payload.get("operation") or "None",
        "open_date": open_date,
        "to_date": payload.get("to_date") or None,
        "settlement_date": payload.get("settlement_date") or None,
        "quantity": payload["quantity"],
        "underlying": str(payload["underlying"]).strip().upper(),
        "type": str(payload["type"]).strip().upper(),
        "strike_price": payload["strike_price"],
        "collateral": payload.get("collateral") or 0,
        "premium": payload.get("premium") or 0,
        "final_profit": payload.get("final_profit"),
        "profit_percent": profit_percent(payload),
        "delta": payload.get("delta"),
        "iv": payload.get("iv"),
        "capital_efficiency": payload.get("capital_efficiency"),
        "user_id": payload.get("user_id"),
        "owner_id": payload.get("owner_id"),
        "year": int(payload.get("year") or year_of(open_date)),
    }


def _invalidate() -> None:
    cache.delete_pattern("users-selection:*")


def list_options(
    owner_id: Optional[int] = None,
    user_id: Optional[str] = None,
    year: Optional[int] = None,
    status: Optional[str] = None,
) -> List[Dict[str, Any]]:
    clauses: List[str] = []
    params: List[Any] = []
    if owner_id is not None:
        clauses.append("owner_id = ?")
        params.append(owner_id)
    elif user_id:
        clauses.append("user_id = ?")
        params.append(user_id)
    if year:
        clauses.append("year = ?")
        params.append(year)
    if status:
        clauses.append("status = ?")
        params.append(status)
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

    def _run(conn):
        cur = conn.cursor()
        cur.execute(f"SELECT * FROM OPTIONS{where} ORDER BY open_date DESC, id DESC", params)
        return rows_to_dicts(cur.fetchall())

    return with_conn(_run)


def _insert(cur, values: Dict[str, Any]) -> tuple[int, str]:
    code = unique_code(cur, "OPTIONS")
    ts = now_ts()
    cols = list(_COLUMNS) + ["code", "created_at", "updated_at"]
    cur.execute(
        f"INSERT INTO OPTIONS ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
        [values[c] for c in _COLUMNS] + [code, ts, ts],
    )
    return cur.lastrowid, code


def create_option(payload: Dict[str, Any]) -> Dict[str, Any]:
    missing = _missing(payload, REQUIRED_FIELDS)
    if missing:
        raise ValueError(f"Missing required fields: {', '.join(missing)}")
    values = _row_values(payload)

    def _run(conn):
        cur = conn.cursor()
        option_id, code = _insert(cur, values)
        conn.commit()
        return option_id, code

    option_id, code = with_conn(_run)
    _invalidate()
    return {"id": option_id, "code": code}


def update_option(payload: Dict[str, Any]) -> None:
    option_id = payload.get("id")
    missing = _missing(payload, ("id",) + REQUIRED_FIELDS)
    if missing:
        raise ValueError(f"Missing required fields: {', '.join(missing)}")
    values = _row_values(payload)
    editable = [c for c in _COLUMNS if c not in ("user_id", "owner_id")]
    if payload.get("owner_id") is not None:
        editable.append("owner_id")

    def _run(conn):
        cur = conn.cursor()
        cur.execute(
            f"UPDATE OPTIONS SET {', '.join(f'{c} = ?' for c in editable)}, updated_at = ? WHERE id = ?",
            [values[c] for c in editable] + [now_ts(), option_id],
        )
        conn.commit()
        return cur.rowcount

    if not with_conn(_run):
        raise LookupError("Option not found")
    _invalidate()


def delete_option(option_id: int) -> None:
    def _run(conn):
        cur = conn.execute("DELETE FROM OPTIONS WHERE id=?", (option_id,))
        conn.commit()
        return cur.rowcount

    if not with_conn(_run):
        raise LookupError("Option not found")
    _invalidate()


def import_options(options: Any) -> Dict[str, Any]:
    """Insert each row independently; duplicates and bad rows are skipped."""
    if not isinstance(options, list):
        raise ValueError("Invalid data format: expected a list of options")

    def _run(conn):
        cur = conn.cursor()
        imported = 0
        skipped = 0
        errors: List[str] = []
        for index, option in enumerate(options):
            if not isinstance(option, dict):
                errors.append(f"Row {index + 1}: not an object")
                skipped += 1
                continue
            missing = _missing(option, IMPORT_REQUIRED_FIELDS)
            if missing:
                errors.append(f"Row {index + 1}: missing {', '.join(missing)}")
                skipped += 1
                continue
            try:
                values = _row_values(option)
                cur.execute(
                    """
                    SELECT id FROM OPTIONS
                    WHERE owner_id=? AND underlying=? AND type=? AND strike_price=? AND open_date=?
                    """,
                    (
                        values["owner_id"],
                        values["underlying"],
                        values["type"],
                        values["strike_price"],
                        values["open_date"],
                    ),
                )
                if cur.fetchone():
                    errors.append(
                        f"Row {index + 1}: already exists ({values['underlying']} {values['type']} {values['strike_price']})"
                    )
                    skipped += 1
                    continue
                _insert(cur, values)
                conn.commit()
                imported += 1
            except Exception as exc:
                conn.rollback()
                logger.warning("Option import row %s failed: %s", index + 1, exc)
                errors.append(f"Row {index + 1}: import failed: {exc}")
                skipped += 1
        return imported, skipped, errors

    imported, skipped, errors = with_conn(_run)
    _invalidate()
    logger.info("Option import: %s imported, %s skipped of %s", imported, skipped, len(options))
    result: Dict[str, Any] = {"success": True, "imported": imported, "skipped": skipped, "total": len(options)}
    if errors:
        result["errors"] = errors
    return result


def export_options(owner_id: int, year: Optional[int] = None) -> List[Dict[str, Any]]:
    rows = list_options(owner_id=owner_id, year=year)
    for row in rows:
        row.pop("id", None)
        row.pop("code", None)
    return rows
