"""
Database connection management.

Provides SQLite connections for ledger and artifact persistence.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "avatar_studio.db"

# Seconds a writer waits on the database lock before giving up
BUSY_TIMEOUT = 30.0


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.
    
    Connections run in autocommit mode so callers control transactions
    explicitly with ``BEGIN IMMEDIATE`` when they need a write lock.
    
    Args:
        db_path: Path to SQLite database file
        
    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
