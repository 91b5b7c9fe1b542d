"""
SQLite helpers shared by the upload ledger and the pipe version store.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path


def ensure_dir(db_path: str) -> None:
    if db_path == ":memory:":
        return
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)


def connect(db_path: str) -> sqlite3.Connection:
    ensure_dir(db_path)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout=3000")
    return conn
