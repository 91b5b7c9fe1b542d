"""
Document store adapter.

Reads the fixed document manifest from disk and pushes each document into the
memory index under its file name. Uploads replace by name, so re-running the
manifest never duplicates a document.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import sqlite3
from pathlib import Path
from typing import List, Optional, Sequence

from .errors import IngestionError
from .memory import BaseMemory
from .models import KnowledgeDocument, ManifestEntry, UploadResult
from .storage import ledger_store

logger = logging.getLogger("advocado")

DEFAULT_CONTENT_TYPE = "text/plain"
DEFAULT_DESCRIPTION = "Steve's Portfolio Pages"


def load_document(entry: ManifestEntry, docs_root: str | Path) -> KnowledgeDocument:
    """Read a manifest entry from disk. Raises IngestionError when unreadable."""
    src = Path(docs_root) / entry.source_dir / entry.file_name
    try:
        raw = src.read_bytes()
    except OSError as exc:
        raise IngestionError(f"Cannot read {src}: {exc.strerror or exc}", details={"path": str(src)}) from exc

    return KnowledgeDocument(
        name=entry.file_name,
        source_path=str(src),
        raw_bytes=raw,
        content_type=DEFAULT_CONTENT_TYPE,
        metadata={
            "extension": entry.extension or "md",
            "description": DEFAULT_DESCRIPTION,
            "cite": "true" if entry.cite else "false",
        },
    )


class DocumentStore:
    """Uploads KnowledgeDocuments into one named memory."""

    def __init__(self, memory: BaseMemory, memory_name: str, *, db_path: Optional[str] = None) -> None:
        self.memory = memory
        self.memory_name = memory_name
        self.db_path = db_path

    def upload(self, document: KnowledgeDocument) -> UploadResult:
        """Upload one document. Raises IngestionError when the memory rejects it."""
        content_hash = hashlib.sha256(document.raw_bytes).hexdigest()
        try:
            self.memory.upload(
                self.memory_name,
                document.name,
                document.raw_bytes,
                document.content_type,
                document.metadata,
            )
        except IngestionError:
            raise
        except Exception as exc:
            raise IngestionError(f"Upload of {document.name} failed: {exc}") from exc

        if self.db_path:
            try:
                ledger_store.record_upload(
                    self.db_path,
                    self.memory_name,
                    document.name,
                    content_hash,
                    len(document.raw_bytes),
                )
            except sqlite3.Error as exc:
                # The document is already in memory; only the audit row is lost.
                logger.warning("ledger write failed memory=%s document=%s: %s", self.memory_name, document.name, exc)
        logger.info(
            "upload memory=%s document=%s bytes=%d sha256=%s",
            self.memory_name,
            document.name,
            len(document.raw_bytes),
            content_hash[:12],
        )
        return UploadResult(name=document.name, ok=True, content_hash=content_hash, size=len(document.raw_bytes))

    def upload_entry(self, entry: ManifestEntry, docs_root: str | Path) -> UploadResult:
        """Read and upload one manifest entry, folding any IngestionError into the result."""
        try:
            return self.upload(load_document(entry, docs_root))
        except IngestionError as exc:
            logger.warning("upload failed memory=%s document=%s: %s", self.memory_name, entry.file_name, exc)
            return UploadResult(name=entry.file_name, ok=False, error=str(exc))

    async def upload_manifest(self, entries: Sequence[ManifestEntry], docs_root: str | Path) -> List[UploadResult]:
        """
        Upload every manifest entry concurrently.

        Each entry is attempted independently; one failure never stops the
        others. Results are returned in manifest order.
        """
        if self.db_path:
            ledger_store.init_ledger_db(self.db_path)
        tasks = [asyncio.to_thread(self.upload_entry, entry, docs_root) for entry in entries]
        results = await asyncio.gather(*tasks)
        failed = sum(1 for r in results if not r.ok)
        logger.info(
            "manifest upload memory=%s total=%d failed=%d",
            self.memory_name,
            len(results),
            failed,
        )
        return list(results)
