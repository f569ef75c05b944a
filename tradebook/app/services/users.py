from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..analytics import yearly_report_stats
from ..db import now_ts, rows_to_dicts, with_conn
from ..deps import ROLES
from ..errors import ConflictError
from ..security import hash_password, verify_password
from .cache import cache, get_user_selection_cache_key

logger = logging.getLogger(__name__)

SELECTION_TTL = 5 * 60
CUSTOMER_ONLY_FIELDS = ("management_fee", "ib_account", "initial_cost")
# Trading records removed when an account is cleared or deleted.
TRADING_TABLES = (
    ("OPTIONS", "owner_id"),
    ("STOCK_TRADES", "owner_id"),
    ("DAILY_NET_EQUITY", "user_id"),
    ("DEPOSITS", "user_id"),
    ("monthly_interest", "user_id"),
    ("monthly_fees", "user_id"),
)
MONTHLY_TABLES = {"interest": ("monthly_interest", "interest"), "fees": ("monthly_fees", "amount")}


def _current_year() -> int:
    return datetime.now(timezone.utc).year


def _invalidate_selection() -> None:
    cache.delete_pattern("users-selection:*")


# ---- authentication ----------------------------------------------------


def authenticate(account: Optional[str], password: Optional[str]) -> Dict[str, Any]:
    """Match ``account`` by user_id first, then by email; verify the password."""
    if not account or not password:
        raise ValueError("Account and password are required")

    def _run(conn):
        cur = conn.cursor()
        cur.execute("SELECT * FROM USERS WHERE user_id=? ORDER BY year DESC LIMIT 1", (account,))
        row = cur.fetchone()
        if row:
            return dict(row)
        cur.execute("SELECT * FROM USERS WHERE email=?", (account,))
        matches = cur.fetchall()
        if len(matches) > 1:
            raise ValueError("This email has multiple accounts; sign in with the account ID")
        return dict(matches[0]) if matches else None

    user = with_conn(_run)
    if not user or not verify_password(password, user.get("password")):
        logger.info("Failed login for %s", account)
        raise PermissionError("Invalid account or password")
    return user


def register(email: Optional[str], password: Optional[str], user_id: Optional[str]) -> Dict[str, Any]:
    if not email or not password or not user_id:
        raise ValueError("Email, user ID and password are required")
    hashed = hash_password(password)

    def _run(conn):
        cur = conn.cursor()
        cur.execute("SELECT id FROM USERS WHERE user_id=?", (user_id,))
        if cur.fetchone():
            raise ConflictError("This user ID is already taken")
        ts = now_ts()
        cur.execute(
            """
            INSERT INTO USERS (email, user_id, password, role, year, created_at, updated_at)
            VALUES (?, ?, ?, 'customer', ?, ?, ?)
            """,
            (email, user_id, hashed, _current_year(), ts, ts),
        )
        conn.commit()
        cur.execute("SELECT id, email, user_id, role FROM USERS WHERE id=?", (cur.lastrowid,))
        return dict(cur.fetchone())

    user = with_conn(_run)
    _invalidate_selection()
    logger.info("Registered user %s", user_id)
    return user


def get_profile(user_pk: int) -> Dict[str, Any]:
    def _run(conn):
        cur = conn.cursor()
        cur.execute("SELECT id, email, user_id, role, avatar_url FROM USERS WHERE id=?", (user_pk,))
        return cur.fetchone()

    row = with_conn(_run)
    if not row:
        raise LookupError("User not found")
    return dict(row)


def update_profile(user_pk: int, user_id: Optional[str], avatar_url: Optional[str]) -> Dict[str, Any]:
    def _run(conn):
        cur = conn.cursor()
        if user_id:
            cur.execute("SELECT id FROM USERS WHERE user_id=? AND id!=?", (user_id, user_pk))
            if cur.fetchone():
                raise ConflictError("User ID already taken")
        cur.execute(
            """
            UPDATE USERS
            SET user_id=COALESCE(?, user_id), avatar_url=?, updated_at=?
            WHERE id=?
            """,
            (user_id or None, avatar_url, now_ts(), user_pk),
        )
        conn.commit()

    with_conn(_run)
    _invalidate_selection()
    return get_profile(user_pk)


# ---- listing -------------------------------------------------------------


def list_users(viewer: Dict[str, Any], year: Optional[int] = None) -> List[Dict[str, Any]]:
    clauses: List[str] = []
    params: List[Any] = []
    if viewer.get("role") == "customer":
        clauses.append("id = ?")
        params.append(viewer["id"])
    if year:
        clauses.append("(year = ? OR role = 'admin')")
        params.append(year)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    def _run(conn):
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT id, email, user_id, role, management_fee, ib_account, phone, year,
                   created_at, initial_cost
            FROM USERS
            {where}
            ORDER BY
                CASE role
                    WHEN 'admin' THEN 1
                    WHEN 'manager' THEN 2
                    WHEN 'trader' THEN 3
                    WHEN 'customer' THEN 4
                    ELSE 5
                END ASC,
                created_at DESC,
                id DESC
            """,
            params,
        )
        return rows_to_dicts(cur.fetchall())

    return with_conn(_run)


def _monthly_stats(conn, year: int) -> Dict[int, Dict[str, Dict[str, float]]]:
    cur = conn.cursor()
    cur.execute(
        """
        SELECT owner_id AS user_id,
               strftime('%m', open_date, 'unixepoch') AS month,
               type,
               SUM(COALESCE(final_profit, 0)) AS profit
        FROM OPTIONS
        WHERE strftime('%Y', open_date, 'unixepoch') = ?
        GROUP BY owner_id, month, type
        """,
        (str(year),),
    )
    stats: Dict[int, Dict[str, Dict[str, float]]] = {}

    def _bucket(user_pk, month):
        return stats.setdefault(user_pk, {}).setdefault(
            month, {"total": 0.0, "put": 0.0, "call": 0.0, "interest": 0.0}
        )

    for row in cur.fetchall():
        bucket = _bucket(row["user_id"], row["month"])
        profit = float(row["profit"] or 0)
        bucket["total"] += profit
        kind = (row["type"] or "").upper()
        if kind == "PUT":
            bucket["put"] += profit
        elif kind == "CALL":
            bucket["call"] += profit

    cur.execute("SELECT user_id, month, interest FROM monthly_interest WHERE year=?", (year,))
    for row in cur.fetchall():
        bucket = _bucket(row["user_id"], f"{int(row['month']):02d}")
        bucket["interest"] = float(row["interest"] or 0)
        bucket["total"] += bucket["interest"]
    return stats


def user_selection(
    roles: Optional[List[str]] = None,
    year: Optional[int] = None,
    user_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Lightweight user list for pickers, with option counts per user."""
    key = get_user_selection_cache_key(",".join(roles or []) or None, year, user_id)
    return cache.remember(key, lambda: _load_selection(roles, year, user_id), ttl=SELECTION_TTL)


def _load_selection(roles, year, user_id) -> List[Dict[str, Any]]:
    params: List[Any] = []
    year_filter = ""
    clauses: List[str] = []
    if year:
        year_filter = " AND OPTIONS.year = ?"
        params.extend([year, year])
        clauses.append("(USERS.year = ? OR role = 'admin')")
    query = f"""
        SELECT id, email, user_id, avatar_url, ib_account, role, initial_cost,
               (SELECT COUNT(*) FROM OPTIONS WHERE OPTIONS.owner_id = USERS.id{year_filter}) AS options_count,
               (SELECT COUNT(*) FROM OPTIONS
                WHERE OPTIONS.owner_id = USERS.id{year_filter} AND OPTIONS.status = 'Open') AS open_count
        FROM USERS
    """
    if year:
        params.append(year)
    if roles:
        clauses.append(f"role IN ({','.join('?' for _ in roles)})")
        params.extend(roles)
    if user_id:
        clauses.append("user_id = ?")
        params.append(user_id)
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY email ASC, id ASC"

    def _run(conn):
        cur = conn.cursor()
        cur.execute(query, params)
        users = rows_to_dicts(cur.fetchall())
        if not year:
            return users
        stats = _monthly_stats(conn, year)
        for user in users:
            per_month = stats.get(user["id"], {})
            months = []
            for month in range(1, 13):
                label = f"{month:02d}"
                data = per_month.get(label, {"total": 0.0, "put": 0.0, "call": 0.0, "interest": 0.0})
                months.append(
                    {
                        "month": label,
                        "total_profit": data["total"],
                        "put_profit": data["put"],
                        "call_profit": data["call"],
                        "interest": data["interest"],
                    }
                )
            user["monthly_stats"] = months
            user["total_profit"] = sum(m["total_profit"] for m in months)
        return users

    return with_conn(_run)


# ---- management ---------------------------------------------------------


def _check_duplicates(cur, email: str, user_id: str, year: int, exclude_pk: Optional[int] = None) -> None:
    sql = "SELECT email, user_id FROM USERS WHERE (email=? OR user_id=?) AND year=?"
    params: List[Any] = [email, user_id, year]
    if exclude_pk is not None:
        sql += " AND id!=?"
        params.append(exclude_pk)
    cur.execute(sql, params)
    for row in cur.fetchall():
        if row["email"] == email:
            raise ConflictError("Email is already registered for that year")
        if row["user_id"] == user_id:
            raise ConflictError("User ID is already used for that year")


def create_user(payload: Dict[str, Any]) -> int:
    email = payload.get("email")
    user_id = payload.get("userId")
    password = payload.get("password")
    role = payload.get("role")
    if not email or not user_id or not password or not role:
        raise ValueError("Email, user ID, password and role are required")
    if role not in ROLES:
        raise ValueError("Invalid role")
    year = int(payload.get("year") or _current_year())
    is_customer = role == "customer"
    hashed = hash_password(password)

    def _run(conn):
        cur = conn.cursor()
        _check_duplicates(cur, email, user_id, year)
        ts = now_ts()
        cur.execute(
            """
            INSERT INTO USERS (email, user_id, password, role, management_fee, ib_account, phone,
                               year, initial_cost, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                email,
                user_id,
                hashed,
                role,
                (payload.get("managementFee") or 0) if is_customer else 0,
                (payload.get("ibAccount") or "") if is_customer else "",
                payload.get("phone") or None,
                year,
                (payload.get("initialCost") or 0) if is_customer else 0,
                ts,
                ts,
            ),
        )
        conn.commit()
        return cur.lastrowid

    new_id = with_conn(_run)
    _invalidate_selection()
    logger.info("Created %s account %s for %s", role, user_id, year)
    return new_id


def update_user(payload: Dict[str, Any]) -> None:
    user_pk = payload.get("id")
    if not user_pk:
        raise ValueError("Missing user id")
    role = payload.get("role")
    if role and role not in ROLES:
        raise ValueError("Invalid role")
    email = payload.get("email")
    user_id = payload.get("userId")
    password = payload.get("password")
    hashed = hash_password(password) if password and password.strip() else None

    def _run(conn):
        cur = conn.cursor()
        cur.execute("SELECT * FROM USERS WHERE id=?", (user_pk,))
        current = cur.fetchone()
        if not current:
            raise LookupError("User not found")
        if (email and email != current["email"]) or (user_id and user_id != current["user_id"]):
            _check_duplicates(
                cur, email or current["email"], user_id or current["user_id"], current["year"], exclude_pk=user_pk
            )

        sets = ["updated_at = ?"]
        params: List[Any] = [now_ts()]
        for column, value in (("email", email), ("user_id", user_id), ("role", role)):
            if value:
                sets.append(f"{column} = ?")
                params.append(value)
        demoted = bool(role) and role != "customer"
        for column, key, cleared in (
            ("management_fee", "managementFee", 0),
            ("ib_account", "ibAccount", ""),
            ("initial_cost", "initialCost", 0),
        ):
            if key in payload and payload[key] is not None:
                sets.append(f"{column} = ?")
                params.append(payload[key])
            elif demoted:
                sets.append(f"{column} = ?")
                params.append(cleared)
        if "phone" in payload:
            sets.append("phone = ?")
            params.append(payload.get("phone"))
        if hashed:
            sets.append("password = ?")
            params.append(hashed)
        params.append(user_pk)
        cur.execute(f"UPDATE USERS SET {', '.join(sets)} WHERE id = ?", params)
        conn.commit()

    with_conn(_run)
    _invalidate_selection()


def get_user(user_pk: int) -> Dict[str, Any]:
    def _run(conn):
        cur = conn.cursor()
        cur.execute("SELECT id, user_id, email, role, initial_cost FROM USERS WHERE id=?", (user_pk,))
        return cur.fetchone()

    row = with_conn(_run)
    if not row:
        raise LookupError("User not found")
    return dict(row)


def set_initial_cost(user_pk: int, initial_cost: Optional[float]) -> None:
    if initial_cost is None:
        return

    def _run(conn):
        cur = conn.execute("UPDATE USERS SET initial_cost=?, updated_at=? WHERE id=?", (initial_cost, now_ts(), user_pk))
        conn.commit()
        return cur.rowcount

    if not with_conn(_run):
        raise LookupError("User not found")
    cache.delete_pattern(f"benchmark:{user_pk}:*")


def delete_user(user_pk: int, actor_pk: int, clear_records: bool = False) -> Dict[str, Any]:
    """Remove a user's trading records, and the account unless ``clear_records``."""
    if user_pk == actor_pk:
        raise ValueError("You cannot delete your own account")

    def _run(conn):
        cur = conn.cursor()
        cur.execute("SELECT id FROM USERS WHERE id=?", (user_pk,))
        if not cur.fetchone():
            raise LookupError("User not found")
        failed = []
        for table, column in TRADING_TABLES:
            try:
                cur.execute(f"DELETE FROM {table} WHERE {column}=?", (user_pk,))
                conn.commit()
            except Exception as exc:
                conn.rollback()
                failed.append(table)
                logger.error("Failed to delete from %s for user %s: %s", table, user_pk, exc)

        if clear_records:
            cur.execute("UPDATE USERS SET initial_cost=0, updated_at=? WHERE id=?", (now_ts(), user_pk))
            conn.commit()
            return failed

        cur.execute("DELETE FROM COMMENTS WHERE created_by=? OR updated_by=?", (user_pk, user_pk))
        cur.execute("UPDATE ITEMS SET created_by=NULL WHERE created_by=?", (user_pk,))
        cur.execute("UPDATE ITEMS SET updated_by=NULL WHERE updated_by=?", (user_pk,))
        cur.execute("UPDATE ITEMS SET assignee_id=NULL WHERE assignee_id=?", (user_pk,))
        cur.execute("DELETE FROM PROJECTS WHERE user_id=?", (user_pk,))
        cur.execute("DELETE FROM PROJECT_USERS WHERE user_id=?", (user_pk,))
        cur.execute("DELETE FROM USERS WHERE id=?", (user_pk,))
        conn.commit()
        return failed

    failed = with_conn(_run)
    cache.delete_pattern(f"benchmark:{user_pk}:*")
    _invalidate_selection()
    logger.info("User %s %s by %s", user_pk, "cleared" if clear_records else "deleted", actor_pk)
    result: Dict[str, Any] = {"success": True}
    if clear_records:
        result["mode"] = "clear_records"
    if failed:
        result["failed"] = failed
    return result


# ---- monthly interest / fees -----------------------------------------------


def get_monthly(kind: str, user_pk: int, year: Optional[int]) -> List[Dict[str, Any]]:
    if not year:
        raise ValueError("Missing year")
    table, column = MONTHLY_TABLES[kind]

    def _run(conn):
        cur = conn.cursor()
        cur.execute(
            f"SELECT month, {column} AS value FROM {table} WHERE user_id=? AND year=? ORDER BY month ASC",
            (user_pk, int(year)),
        )
        return {int(r["month"]): float(r["value"] or 0) for r in cur.fetchall()}

    found = with_conn(_run)
    return [{"month": m, column: found.get(m, 0.0)} for m in range(1, 13)]


def put_monthly(kind: str, user_pk: int, year: Optional[int], entries: Optional[List[Dict[str, Any]]]) -> None:
    if not year or entries is None:
        raise ValueError("Missing year or monthly values")
    table, column = MONTHLY_TABLES[kind]
    rows = []
    for entry in entries:
        month = int(entry.get("month") or 0)
        if not 1 <= month <= 12:
            raise ValueError(f"Invalid month: {entry.get('month')}")
        rows.append((user_pk, int(year), month, float(entry.get(column) or 0), now_ts()))

    def _run(conn):
        conn.executemany(
            f"""
            INSERT INTO {table} (user_id, year, month, {column}, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id, year, month)
            DO UPDATE SET {column}=excluded.{column}, updated_at=excluded.updated_at
            """,
            rows,
        )
        conn.commit()

    with_conn(_run)
    _invalidate_selection()


# ---- options analysis ------------------------------------------------------


def _rate(part: float, whole: float) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def options_analysis(user_pk: int, year: int) -> List[Dict[str, Any]]:
    """Per-month win rates, average delta/IV and capital flow of one owner's options.

    Capital flow is collateral times days held; open positions count days up to now.
    """

    def _run(conn):
        cur = conn.cursor()
        cur.execute(
            """
            SELECT strftime('%m', open_date, 'unixepoch') AS month,
                   UPPER(type) AS type,
                   COUNT(*) AS trades,
                   SUM(CASE WHEN final_profit > 0 THEN 1 ELSE 0 END) AS winning,
                   SUM(COALESCE(delta, 0)) AS delta_sum,
                   SUM(COALESCE(iv, 0)) AS iv_sum,
                   SUM(COALESCE(final_profit, 0)) AS profit,
                   SUM(COALESCE(collateral, 0)
                       * CAST((COALESCE(settlement_date, ?) - open_date) / 86400 AS INTEGER)) AS capital_flow
            FROM OPTIONS
            WHERE owner_id=? AND strftime('%Y', open_date, 'unixepoch') = ?
            GROUP BY month, UPPER(type)
            """,
            (now_ts(), user_pk, str(year)),
        )
        return rows_to_dicts(cur.fetchall())

    months = {
        f"{m:02d}": {"put": [0, 0, 0.0], "call": [0, 0, 0.0], "all": [0, 0, 0.0], "iv": 0.0, "profit": 0.0, "flow": 0.0}
        for m in range(1, 13)
    }
    for row in with_conn(_run):
        bucket = months.get(row["month"])
        if bucket is None:
            continue
        sides = ["all"] + [side for side in ("put", "call") if row["type"] == side.upper()]
        for side in sides:
            bucket[side][0] += row["trades"]
            bucket[side][1] += row["winning"] or 0
            bucket[side][2] += float(row["delta_sum"] or 0)
        bucket["iv"] += float(row["iv_sum"] or 0)
        bucket["profit"] += float(row["profit"] or 0)
        bucket["flow"] += float(row["capital_flow"] or 0)

    analysis = []
    for month, bucket in months.items():
        put, call, total = bucket["put"], bucket["call"], bucket["all"]
        analysis.append(
            {
                "month": month,
                "put_win_rate": _rate(put[1], put[0]),
                "call_win_rate": _rate(call[1], call[0]),
                "total_win_rate": _rate(total[1], total[0]),
                "put_delta": put[2] / put[0] if put[0] else 0.0,
                "call_delta": call[2] / call[0] if call[0] else 0.0,
                "total_delta": total[2] / total[0] if total[0] else 0.0,
                "avg_iv": bucket["iv"] / total[0] if total[0] else 0.0,
                "capital_efficiency": _rate(bucket["profit"], bucket["flow"]),
                "capital_flow": bucket["flow"],
            }
        )
    return analysis


# ---- yearly report ---------------------------------------------------------


def account_report(user_pk: int, year: Optional[int] = None, today: Optional[datetime] = None) -> Dict[str, Any]:
    today = today or datetime.now(timezone.utc)
    year = year or today.year

    def _run(conn):
        cur = conn.cursor()
        cur.execute("SELECT id, user_id, email, initial_cost FROM USERS WHERE id=?", (user_pk,))
        user = cur.fetchone()
        if not user:
            raise LookupError("User not found")

        cur.execute(
            """
            SELECT date, net_equity, cash_balance FROM DAILY_NET_EQUITY
            WHERE user_id=? AND year=? ORDER BY date ASC
            """,
            (user_pk, year),
        )
        equity = rows_to_dicts(cur.fetchall())

        cur.execute(
            """
            SELECT COALESCE(SUM(CASE WHEN transaction_type='withdrawal' THEN -amount ELSE amount END), 0)
            FROM DEPOSITS WHERE user_id=? AND year=?
            """,
            (user_pk, year),
        )
        net_deposits = float(cur.fetchone()[0] or 0)

        cur.execute(
            """
            SELECT symbol, SUM(quantity) AS quantity FROM STOCK_TRADES
            WHERE owner_id=? AND year=? AND status='Open'
            GROUP BY symbol HAVING SUM(quantity) > 0
            ORDER BY symbol
            """,
            (user_pk, year),
        )
        stock_positions = rows_to_dicts(cur.fetchall())

        cur.execute(
            """
            SELECT CAST(strftime('%m', settlement_date, 'unixepoch') AS INTEGER) AS month,
                   SUM(final_profit) AS profit
            FROM OPTIONS
            WHERE owner_id=? AND year=? AND status != 'Open'
              AND settlement_date IS NOT NULL
            GROUP BY month ORDER BY month
            """,
            (user_pk, year),
        )
        monthly_premium = rows_to_dicts(cur.fetchall())

        cur.execute(
            """
            SELECT COALESCE(SUM(ABS(quantity) * strike_price * 100), 0) FROM OPTIONS
            WHERE owner_id=? AND year=? AND status='Open' AND UPPER(type)='PUT'
            """,
            (user_pk, year),
        )
        put_capital = float(cur.fetchone()[0] or 0)

        cur.execute(
            """
            SELECT quantity, to_date, type, underlying, strike_price, premium FROM OPTIONS
            WHERE owner_id=? AND year=? AND status='Open'
            ORDER BY to_date, underlying, type
            """,
            (user_pk, year),
        )
        open_options = rows_to_dicts(cur.fetchall())
        return dict(user), equity, net_deposits, stock_positions, monthly_premium, put_capital, open_options

    user, equity, net_deposits, stock_positions, monthly_premium, put_capital, open_options = with_conn(_run)

    latest = equity[-1] if equity else {}
    net_worth = float(latest.get("net_equity") or 0)
    cost = float(user.get("initial_cost") or 0) + net_deposits
    stats = yearly_report_stats(equity)

    quarter_start = (today.month - 1) // 3 * 3 + 1
    quarterly_premium = sum(
        float(m["profit"] or 0) for m in monthly_premium if quarter_start <= (m["month"] or 0) <= quarter_start + 2
    )
    annual_premium = sum(float(m["profit"] or 0) for m in monthly_premium)
    annual_target = round(net_worth * 0.04)

    return {
        "user_id": user.get("user_id") or (user.get("email") or "").split("@")[0],
        "year": year,
        "accountNetWorth": net_worth,
        "cashBalance": float(latest.get("cash_balance") or 0),
        "cost": cost,
        "netProfit": net_worth - cost,
        "ytdReturn": stats["ytd_return"],
        "maxDrawdown": stats["max_drawdown"],
        "annualStdDev": stats["annualized_std"],
        "sharpeRatio": stats["sharpe"],
        "marginRate": put_capital / net_worth if net_worth > 0 else 0.0,
        "stockPositions": stock_positions,
        "monthlyPremium": monthly_premium,
        "quarterlyPremium": quarterly_premium,
        "quarterlyTarget": round(annual_target / 4),
        "annualPremium": annual_premium,
        "annualTarget": annual_target,
        "openOptions": open_options,
    }
