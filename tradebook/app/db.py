import logging
import os
import sqlite3
import threading
import time

from .config import settings

_LOCK = threading.RLock()
logger = logging.getLogger(__name__)


def _table_columns(conn, table_name: str) -> list[str]:
    cur = conn.cursor()
    cur.execute(f"PRAGMA table_info({table_name})")
    return [row[1] for row in cur.fetchall()]


_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS USERS (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT NOT NULL,
        user_id TEXT NOT NULL,
        password TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'customer',
        management_fee REAL DEFAULT 0,
        ib_account TEXT,
        phone TEXT,
        year INTEGER,
        initial_cost REAL DEFAULT 0,
        avatar_url TEXT,
        api_key TEXT,
        created_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        updated_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        UNIQUE(user_id, year)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS PROJECTS (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        description TEXT,
        avatar_url TEXT,
        created_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        updated_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        FOREIGN KEY (user_id) REFERENCES USERS(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS PROJECT_USERS (
        project_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        assigned_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        PRIMARY KEY (project_id, user_id),
        FOREIGN KEY (project_id) REFERENCES PROJECTS(id) ON DELETE CASCADE,
        FOREIGN KEY (user_id) REFERENCES USERS(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS MILESTONES (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        due_date INTEGER,
        created_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        FOREIGN KEY (project_id) REFERENCES PROJECTS(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ITEMS (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        title TEXT NOT NULL,
        content TEXT,
        status TEXT NOT NULL DEFAULT 'New',
        milestone_id INTEGER,
        created_by INTEGER,
        updated_by INTEGER,
        assignee_id INTEGER,
        created_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        updated_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        FOREIGN KEY (project_id) REFERENCES PROJECTS(id) ON DELETE CASCADE,
        FOREIGN KEY (milestone_id) REFERENCES MILESTONES(id) ON DELETE SET NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS COMMENTS (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        item_id INTEGER NOT NULL,
        content TEXT NOT NULL,
        created_by INTEGER,
        updated_by INTEGER,
        created_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        updated_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        FOREIGN KEY (item_id) REFERENCES ITEMS(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS OPTIONS (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        code TEXT UNIQUE,
        status TEXT NOT NULL DEFAULT 'Open',
        operation TEXT,
        open_date INTEGER NOT NULL,
        to_date INTEGER,
        settlement_date INTEGER,
        quantity REAL NOT NULL,
        underlying TEXT NOT NULL,
        type TEXT NOT NULL,
        strike_price REAL NOT NULL,
        collateral REAL,
        premium REAL,
        final_profit REAL,
        profit_percent REAL,
        delta REAL,
        iv REAL,
        capital_efficiency REAL,
        user_id TEXT,
        owner_id INTEGER,
        year INTEGER,
        created_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        updated_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        FOREIGN KEY (owner_id) REFERENCES USERS(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS STOCK_TRADES (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        code TEXT UNIQUE,
        user_id TEXT,
        owner_id INTEGER,
        year INTEGER,
        symbol TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'Open',
        open_date INTEGER NOT NULL,
        close_date INTEGER,
        open_price REAL NOT NULL,
        close_price REAL,
        quantity REAL NOT NULL,
        created_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        updated_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        FOREIGN KEY (owner_id) REFERENCES USERS(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS DEPOSITS (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        deposit_date INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        amount REAL NOT NULL,
        year INTEGER,
        note TEXT,
        deposit_type TEXT NOT NULL DEFAULT 'cash',
        transaction_type TEXT NOT NULL DEFAULT 'deposit',
        created_by INTEGER,
        created_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        updated_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        FOREIGN KEY (user_id) REFERENCES USERS(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS DAILY_NET_EQUITY (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        date INTEGER NOT NULL,
        net_equity REAL NOT NULL,
        cash_balance REAL,
        management_fee REAL DEFAULT 0,
        interest REAL DEFAULT 0,
        year INTEGER,
        created_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        updated_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        UNIQUE(user_id, date),
        FOREIGN KEY (user_id) REFERENCES USERS(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS monthly_interest (
        user_id INTEGER NOT NULL,
        year INTEGER NOT NULL,
        month INTEGER NOT NULL,
        interest REAL NOT NULL DEFAULT 0,
        updated_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        PRIMARY KEY (user_id, year, month)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS monthly_fees (
        user_id INTEGER NOT NULL,
        year INTEGER NOT NULL,
        month INTEGER NOT NULL,
        amount REAL NOT NULL DEFAULT 0,
        updated_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
        PRIMARY KEY (user_id, year, month)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS market_prices (
        symbol TEXT NOT NULL,
        date INTEGER NOT NULL,
        close_price REAL NOT NULL,
        PRIMARY KEY (symbol, date)
    )
    """,
]

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_items_project ON ITEMS(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_comments_item ON COMMENTS(item_id)",
    "CREATE INDEX IF NOT EXISTS idx_options_owner ON OPTIONS(owner_id, year)",
    "CREATE INDEX IF NOT EXISTS idx_stock_trades_owner ON STOCK_TRADES(owner_id, year)",
    "CREATE INDEX IF NOT EXISTS idx_deposits_user_date ON DEPOSITS(user_id, deposit_date)",
    "CREATE INDEX IF NOT EXISTS idx_net_equity_user_date ON DAILY_NET_EQUITY(user_id, date)",
]

# Columns added after the first release of each table.
_BACKFILL_COLUMNS = {
    "USERS": [("avatar_url", "TEXT"), ("api_key", "TEXT"), ("phone", "TEXT")],
    "DAILY_NET_EQUITY": [
        ("cash_balance", "REAL"),
        ("management_fee", "REAL DEFAULT 0"),
        ("interest", "REAL DEFAULT 0"),
    ],
    "OPTIONS": [("code", "TEXT"), ("capital_efficiency", "REAL")],
    "STOCK_TRADES": [("code", "TEXT")],
}


def ensure_schema() -> None:
    conn = connect()
    cur = conn.cursor()

    for statement in _SCHEMA:
        cur.execute(statement)

    for table, additions in _BACKFILL_COLUMNS.items():
        columns = _table_columns(conn, table)
        for name, decl in additions:
            if name not in columns:
                try:
                    cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
                except sqlite3.OperationalError as exc:
                    logger.warning("Could not add %s.%s: %s", table, name, exc)

    for statement in _INDEXES:
        cur.execute(statement)

    conn.commit()
    conn.close()


def connect():
    db_path = settings.db_path
    db_dir = os.path.dirname(os.path.abspath(db_path))
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=30, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=30000;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def with_conn(fn):
    with _LOCK:
        conn = connect()
        try:
            return fn(conn)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


def now_ts() -> int:
    return int(time.time())


def rows_to_dicts(rows) -> list[dict]:
    return [dict(r) for r in rows]
