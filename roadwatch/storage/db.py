import os
import sqlite3
from roadwatch.utils.log import get_logger

logger = get_logger(__name__)

BUSY_TIMEOUT_S = 30.0


class StorageError(Exception):
    """
    The backing store failed; the operation may be retried.
    """


def get_connection(db_path: str) -> sqlite3.Connection:
    """
    Get a SQLite connection with foreign-keys enabled
    and rows returned as sqlite3.Row.

    Writers from other connections are waited on for up to BUSY_TIMEOUT_S.
    """
    conn = sqlite3.connect(db_path, timeout=BUSY_TIMEOUT_S)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def init_db(db_path: str) -> sqlite3.Connection:
    """
    Initialize (or migrate) the database by running the
    DDL in schema.sql, then return a live connection.
    """
    schema_path = os.path.join(os.path.dirname(__file__), "schema.sql")
    logger.debug("Initializing DB schema: %s", schema_path)
    try:
        conn = get_connection(db_path)
        with open(schema_path, "r") as f:
            conn.executescript(f.read())
        conn.commit()
    except sqlite3.Error as e:
        raise StorageError(f"cannot open database {db_path}: {e}") from e
    return conn
