"""
Production database initialization script.
Run this once after deployment to create the schema and the admin account.
"""
import argparse
import os
import sys

from tradebook.app.analytics import year_of
from tradebook.app.db import ensure_schema, now_ts, with_conn
from tradebook.app.security import hash_password

ADMIN_ACCOUNT = "admin"


def seed_admin(password: str) -> bool:
    """Create the admin account; returns False when any user already exists."""

    def _run(conn):
        cur = conn.cursor()
        cur.execute("SELECT COUNT(*) FROM USERS")
        if cur.fetchone()[0] > 0:
            return False
        ts = now_ts()
        cur.execute(
            """
            INSERT INTO USERS (email, user_id, password, role, year, created_at, updated_at)
            VALUES (?, ?, ?, 'admin', ?, ?, ?)
            """,
            (ADMIN_ACCOUNT, ADMIN_ACCOUNT, hash_password(password), year_of(ts), ts, ts),
        )
        conn.commit()
        return True

    return with_conn(_run)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create the tradebook schema and seed the admin account.")
    parser.add_argument("--password", default=os.environ.get("TB_ADMIN_PASSWORD"))
    args = parser.parse_args(argv)

    print("Initializing tradebook database...")
    ensure_schema()
    print("✓ Schema ready")
    if not args.password:
        print("No admin password given (--password or TB_ADMIN_PASSWORD); skipping admin seed.")
        return 0
    if seed_admin(args.password):
        print("✓ Created admin account")
    else:
        print("Users already exist; leaving them unchanged.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
