import logging
import secrets
import string

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 5
MAX_ATTEMPTS = 10
CODED_TABLES = ("OPTIONS", "STOCK_TRADES")


class CodeExhaustedError(RuntimeError):
    pass


def random_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def unique_code(cur, table: str) -> str:
    """Short human-readable code not yet used in ``table``."""
    if table not in CODED_TABLES:
        raise ValueError(f"Table {table} does not carry codes")
    for _ in range(MAX_ATTEMPTS):
        code = random_code()
        cur.execute(f"SELECT 1 FROM {table} WHERE code=?", (code,))
        if not cur.fetchone():
            return code
    logger.error("Could not allocate a unique code for %s after %s attempts", table, MAX_ATTEMPTS)
    raise CodeExhaustedError("Failed to generate a unique code")


def backfill_codes(cur, table: str) -> int:
    cur.execute(f"SELECT id FROM {table} WHERE code IS NULL OR code = ''")
    ids = [row[0] for row in cur.fetchall()]
    for row_id in ids:
        cur.execute(f"UPDATE {table} SET code=? WHERE id=?", (unique_code(cur, table), row_id))
    return len(ids)
