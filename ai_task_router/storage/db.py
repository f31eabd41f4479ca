"""
Database connection management.

Provides SQLite connections for the quota ledger.
"""

import sqlite3
from pathlib import Path


def get_connection(db_path: str = "ai_task_router.db", timeout: float = 30.0) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.
    
    Connections use write-ahead logging; readers do not block on a writer.
    
    Args:
        db_path: Path to SQLite database file
        timeout: Seconds to wait on a locked database before failing
        
    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=timeout)
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn
