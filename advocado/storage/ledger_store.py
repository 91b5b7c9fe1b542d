"""
Upload ledger: which document content was last pushed to which memory.

uploads table: (memory_name, document_name, content_hash, size, uploaded_at, upload_count)
One row per (memory_name, document_name); a re-upload overwrites the row, mirroring
the replace-by-name semantics of the memory itself.
"""

from __future__ import annotations

import logging
import time
from contextlib import closing
from typing import Any, Dict, List, Optional

from advocado.storage.db import connect

logger = logging.getLogger("advocado")


def init_ledger_db(db_path: str) -> None:
    with closing(connect(db_path)) as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS uploads (
                memory_name TEXT NOT NULL,
                document_name TEXT NOT NULL,
                content_hash TEXT NOT NULL,
                size INTEGER NOT NULL,
                uploaded_at TEXT NOT NULL,
                upload_count INTEGER NOT NULL DEFAULT 1,
                PRIMARY KEY (memory_name, document_name)
            )
            """
        )
        conn.commit()


def record_upload(db_path: str, memory_name: str, document_name: str, content_hash: str, size: int) -> int:
    """Record a successful upload; returns how many times this name has been uploaded."""
    init_ledger_db(db_path)
    uploaded_at = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
    with closing(connect(db_path)) as conn:
        conn.execute(
            """
            INSERT INTO uploads (memory_name, document_name, content_hash, size, uploaded_at, upload_count)
            VALUES (?, ?, ?, ?, ?, 1)
            ON CONFLICT (memory_name, document_name) DO UPDATE SET
                content_hash = excluded.content_hash,
                size = excluded.size,
                uploaded_at = excluded.uploaded_at,
                upload_count = uploads.upload_count + 1
            """,
            (memory_name, document_name, content_hash, size, uploaded_at),
        )
        conn.commit()
        row = conn.execute(
            "SELECT upload_count FROM uploads WHERE memory_name = ? AND document_name = ?",
            (memory_name, document_name),
        ).fetchone()
    return int(row["upload_count"]) if row else 0


def get_upload(db_path: str, memory_name: str, document_name: str) -> Optional[Dict[str, Any]]:
    init_ledger_db(db_path)
    with closing(connect(db_path)) as conn:
        row = conn.execute(
            "SELECT * FROM uploads WHERE memory_name = ? AND document_name = ?",
            (memory_name, document_name),
        ).fetchone()
    return dict(row) if row else None


def list_uploads(db_path: str, memory_name: str) -> List[Dict[str, Any]]:
    init_ledger_db(db_path)
    with closing(connect(db_path)) as conn:
        rows = conn.execute(
            "SELECT * FROM uploads WHERE memory_name = ? ORDER BY document_name",
            (memory_name,),
        ).fetchall()
    return [dict(row) for row in rows]
