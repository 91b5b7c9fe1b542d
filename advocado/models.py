"""
Data models for the agent core.

Defines the knowledge document records, retrieval results, tool and pipe
configuration, and the language-capability exchange types.
Do not duplicate these definitions elsewhere.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ManifestEntry(BaseModel):
    """One (source_dir, file_name) pair of the fixed document manifest."""

    source_dir: str
    file_name: str
    description: str = ""
    cite: bool = True

    @property
    def stem(self) -> str:
        return self.file_name.rsplit(".", 1)[0]

    @property
    def extension(self) -> str:
        return self.file_name.rsplit(".", 1)[-1] if "." in self.file_name else ""


class KnowledgeDocument(BaseModel):
    """A named document ready for upload. `name` is the replace-by-name key."""

    name: str
    source_path: str
    raw_bytes: bytes
    content_type: str = "text/plain"
    metadata: Dict[str, str] = Field(default_factory=dict)


class UploadResult(BaseModel):
    """Per-document outcome of a manifest upload."""

    name: str
    ok: bool
    content_hash: Optional[str] = None
    size: int = 0
    error: Optional[str] = None


class RetrievedChunk(BaseModel):
    """One excerpt of the retrieved context."""

    document_name: str
    excerpt: str
    score: float = 0.0


class ToolSpec(BaseModel):
    """A callable action exposed to the language capability."""

    name: str
    description: str
    parameters: Dict[str, Any]

    @property
    def properties(self) -> Dict[str, Any]:
        return dict(self.parameters.get("properties") or {})

    @property
    def required(self) -> List[str]:
        return list(self.parameters.get("required") or [])


class ToolCall(BaseModel):
    """A tool invocation requested by the language capability."""

    id: Optional[str] = None
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class Completion(BaseModel):
    """Normalized result from a language capability."""

    text: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)


class ChatMessage(BaseModel):
    """A single turn of conversation history."""

    role: str  # "user" | "assistant"
    content: str


class AgentConfiguration(BaseModel):
    """The bundle of instructions, tools and bound memory for one pipe."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    model: str
    policy_version: str
    system_instructions: str
    retrieval_instructions: str
    tools: List[ToolSpec] = Field(default_factory=list)
    memory_name: str
    manifest: List[ManifestEntry] = Field(default_factory=list)
    site_url: str = ""


class PublishResult(BaseModel):
    name: str
    version: int
    content_hash: str
    changed: bool
