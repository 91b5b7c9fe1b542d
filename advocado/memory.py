from __future__ import annotations

import logging
import re
import threading
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import Settings
from .errors import IngestionError, RetrievalError
from .models import RetrievedChunk

logger = logging.getLogger("advocado")

LANGBASE_API_URL = "https://api.langbase.com"

_WORD_RE = re.compile(r"[a-z0-9][a-z0-9+#.-]*")
_STOPWORDS = frozenset(
    "a an and are about as at be by can could did do does for from has have he her his how i in is it "
    "its me my of on or our she so that the their them they this to was we were what when where which "
    "who why will with would you your".split()
)


class BaseMemory:
    """
    Memory capability interface: replace-by-name upload and relevance-ranked retrieval.

    Calls are synchronous and network-bound; callers run them in worker threads
    when they need concurrency.
    """

    def upload(
        self,
        memory_name: str,
        name: str,
        data: bytes,
        content_type: str,
        metadata: Mapping[str, str],
    ) -> Dict[str, Any]:  # pragma: no cover - interface only
        raise NotImplementedError

    def retrieve(self, query: str, memory_name: str, *, top_k: int = 5) -> List[RetrievedChunk]:  # pragma: no cover - interface only
        raise NotImplementedError


def _terms(text: str) -> List[str]:
    return [w.strip(".-") for w in _WORD_RE.findall(text.lower()) if w.strip(".-") not in _STOPWORDS]


def _paragraphs(text: str) -> List[str]:
    return [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]


class StubMemory(BaseMemory):
    """
    In-process memory index.

    Documents are split into paragraphs and scored by the share of query terms
    a paragraph contains. Good enough for local runs and deterministic tests.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._docs: Dict[str, Dict[str, Tuple[str, Dict[str, str]]]] = {}
        self.upload_calls = 0

    def upload(
        self,
        memory_name: str,
        name: str,
        data: bytes,
        content_type: str,
        metadata: Mapping[str, str],
    ) -> Dict[str, Any]:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise IngestionError(f"Document {name} is not valid UTF-8 text") from exc
        with self._lock:
            self.upload_calls += 1
            self._docs.setdefault(memory_name, {})[name] = (text, dict(metadata))
        return {"ok": True, "memoryName": memory_name, "documentName": name}

    def documents(self, memory_name: str) -> List[str]:
        with self._lock:
            return sorted(self._docs.get(memory_name, {}))

    def content(self, memory_name: str, name: str) -> Optional[str]:
        with self._lock:
            entry = self._docs.get(memory_name, {}).get(name)
        return entry[0] if entry else None

    def retrieve(self, query: str, memory_name: str, *, top_k: int = 5) -> List[RetrievedChunk]:
        query_terms = set(_terms(query))
        if not query_terms:
            return []
        with self._lock:
            docs = dict(self._docs.get(memory_name, {}))

        scored: List[RetrievedChunk] = []
        for name in sorted(docs):
            text, _meta = docs[name]
            for paragraph in _paragraphs(text):
                overlap = query_terms & set(_terms(paragraph))
                if overlap:
                    scored.append(
                        RetrievedChunk(
                            document_name=name,
                            excerpt=paragraph,
                            score=round(len(overlap) / len(query_terms), 4),
                        )
                    )
        scored.sort(key=lambda chunk: chunk.score, reverse=True)
        return scored[: max(0, top_k)]


class LangbaseMemory(BaseMemory):
    """Langbase memory over its REST API."""

    def __init__(self, api_key: str, *, timeout: float = 30.0, base_url: str = LANGBASE_API_URL) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def upload(
        self,
        memory_name: str,
        name: str,
        data: bytes,
        content_type: str,
        metadata: Mapping[str, str],
    ) -> Dict[str, Any]:  # pragma: no cover - network
        import httpx

        body = {
            "memoryName": memory_name,
            "fileName": name,
            "contentType": content_type,
            "meta": dict(metadata),
        }
        try:
            resp = httpx.post(
                f"{self.base_url}/v1/memory/documents",
                headers=self._headers(),
                json=body,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            signed_url = resp.json()["signedUrl"]
            put = httpx.put(
                signed_url,
                headers={"Content-Type": content_type},
                content=data,
                timeout=self.timeout,
            )
            put.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise IngestionError(
                f"Memory rejected document {name}",
                details={"status": exc.response.status_code, "body": exc.response.text[:500]},
            ) from exc
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            raise IngestionError(f"Upload of {name} failed: {exc}") from exc
        return {"ok": True, "memoryName": memory_name, "documentName": name}

    def retrieve(self, query: str, memory_name: str, *, top_k: int = 5) -> List[RetrievedChunk]:  # pragma: no cover - network
        import httpx

        body = {"query": query, "memory": [{"name": memory_name}], "topK": top_k}
        try:
            resp = httpx.post(
                f"{self.base_url}/v1/memory/retrieve",
                headers=self._headers(),
                json=body,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            items = resp.json()
        except httpx.HTTPError as exc:
            raise RetrievalError(f"Memory retrieval failed: {exc}") from exc
        except ValueError as exc:
            raise RetrievalError("Memory returned a non-JSON body") from exc

        chunks: List[RetrievedChunk] = []
        for item in items if isinstance(items, list) else []:
            meta = item.get("meta") or {}
            chunks.append(
                RetrievedChunk(
                    document_name=str(meta.get("documentName") or meta.get("fileName") or ""),
                    excerpt=str(item.get("text") or ""),
                    score=float(item.get("similarity") or 0.0),
                )
            )
        chunks.sort(key=lambda chunk: chunk.score, reverse=True)
        return chunks


def build_memory(settings: Settings) -> BaseMemory:
    """Factory that chooses the concrete memory implementation."""
    if settings.memory_backend == "langbase":
        if not settings.langbase_api_key:
            logger.warning("MEMORY_BACKEND=langbase but LANGBASE_API_KEY is unset; using stub memory")
            return StubMemory()
        return LangbaseMemory(api_key=settings.langbase_api_key, timeout=settings.request_timeout)
    return StubMemory()
