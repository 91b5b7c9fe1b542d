"""
Pipe version store: every published configuration, newest last.

pipes table: (name, version, content_hash, model, policy_version, config_json, published_at)
Version numbers start at 1 per pipe name and only grow.
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import closing
from typing import Any, Dict, List, Optional

from advocado.storage.db import connect

logger = logging.getLogger("advocado")


def init_pipe_db(db_path: str) -> None:
    with closing(connect(db_path)) as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS pipes (
                name TEXT NOT NULL,
                version INTEGER NOT NULL,
                content_hash TEXT NOT NULL,
                model TEXT NOT NULL,
                policy_version TEXT NOT NULL,
                config_json TEXT NOT NULL,
                published_at TEXT NOT NULL,
                PRIMARY KEY (name, version)
            )
            """
        )
        conn.commit()


def latest(db_path: str, name: str) -> Optional[Dict[str, Any]]:
    init_pipe_db(db_path)
    with closing(connect(db_path)) as conn:
        row = conn.execute(
            "SELECT * FROM pipes WHERE name = ? ORDER BY version DESC LIMIT 1",
            (name,),
        ).fetchone()
    if row is None:
        return None
    out = dict(row)
    out["config"] = json.loads(out.pop("config_json"))
    return out


def record_publish(
    db_path: str,
    name: str,
    *,
    content_hash: str,
    model: str,
    policy_version: str,
    config: Dict[str, Any],
) -> int:
    """Insert the next version for `name`; returns the new version number."""
    init_pipe_db(db_path)
    published_at = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
    with closing(connect(db_path)) as conn:
        row = conn.execute("SELECT MAX(version) AS v FROM pipes WHERE name = ?", (name,)).fetchone()
        version = (int(row["v"]) if row and row["v"] is not None else 0) + 1
        conn.execute(
            """
            INSERT INTO pipes (name, version, content_hash, model, policy_version, config_json, published_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (name, version, content_hash, model, policy_version, json.dumps(config, sort_keys=True), published_at),
        )
        conn.commit()
    return version


def history(db_path: str, name: str) -> List[Dict[str, Any]]:
    init_pipe_db(db_path)
    with closing(connect(db_path)) as conn:
        rows = conn.execute(
            "SELECT name, version, content_hash, model, policy_version, published_at "
            "FROM pipes WHERE name = ? ORDER BY version",
            (name,),
        ).fetchall()
    return [dict(row) for row in rows]
