import argparse
import os
import sys

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from tradebook.app.db import now_ts, with_conn
from tradebook.app.security import hash_password


def reset_password(account: str, password: str) -> int:
    """Re-hash ``password`` for every user matching ``account`` by user_id or email."""
    hashed = hash_password(password)

    def _run(conn):
        cur = conn.execute(
            "UPDATE USERS SET password=?, updated_at=? WHERE user_id=? OR email=?",
            (hashed, now_ts(), account, account),
        )
        conn.commit()
        return cur.rowcount

    return with_conn(_run)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Reset a tradebook user's password.")
    parser.add_argument("--account", required=True, help="user_id or email")
    parser.add_argument("--password", required=True)
    args = parser.parse_args(argv)

    if not args.password.strip():
        print("Password must not be empty.", file=sys.stderr)
        return 2
    updated = reset_password(args.account, args.password)
    if not updated:
        print(f"No user matches {args.account}.", file=sys.stderr)
        return 1
    print(f"Password updated for {updated} account(s) matching {args.account}.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
