"""
Prompt/policy assembly and citation enforcement.

`assemble` turns the behavior policy, the retrieval policy and the document
manifest into the fixed instructions of the agent. It is pure: the same
inputs always give the same text, tagged with the model and policy version
they were assembled for.

The citation helpers enforce the source policy on generated answers so the
rule holds even when the language model ignores its instructions.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from .models import ManifestEntry, RetrievedChunk

UNKNOWN_REPLY = "That information isn't available from verified sources."
NO_SOURCE_REPLY = "I couldn't find a verified source for that."
DO_NOT_CITE_LABEL = "[DO NOT CITE]"

_CITATION_RE = re.compile(r"\[([^\]\n]+)\]\((\S+?)\)")
_BARE_URL_RE = re.compile(r"<(https?://[^\s<>]+)>|(https?://[^\s<>()\[\]]+)")


@dataclass(frozen=True)
class AssembledInstructions:
    system_instructions: str
    retrieval_instructions: str
    model: str
    policy_version: str
    allowed_citations: Dict[str, str] = field(default_factory=dict)


def _render(template: str, values: Mapping[str, str]) -> str:
    """Substitute known {placeholders}; any other braces are left alone."""
    out = template
    for key, value in values.items():
        out = out.replace("{" + key + "}", value)
    return out.strip()


def citation_url(site_url: str, entry: ManifestEntry) -> str:
    return f"{site_url.rstrip('/')}/{entry.stem}.html"


def allowed_citations(manifest: Sequence[ManifestEntry], site_url: str) -> Dict[str, str]:
    """Map document name -> page URL for every citable manifest entry."""
    return {entry.file_name: citation_url(site_url, entry) for entry in manifest if entry.cite}


def _source_policy(manifest: Sequence[ManifestEntry], site_url: str) -> str:
    allowed = allowed_citations(manifest, site_url)
    lines = [
        "### Source Policy",
        f"- Cite only the pages listed below. Use the format [page_name]({site_url}/page_name.html).",
    ]
    for url in allowed.values():
        lines.append(f"  - {url}")
    blocked = [entry.file_name for entry in manifest if not entry.cite]
    if blocked:
        lines.append(f"- Never cite these documents, even when they appear in the CONTEXT: {', '.join(blocked)}.")
    lines.append(f"- If no relevant page exists, state: *\"{NO_SOURCE_REPLY}\"*")
    lines.append("- Never invent, assume, or generalize URLs.")
    return "\n".join(lines)


def _hallucination_guard(subject_short: str) -> str:
    return "\n".join(
        [
            "### Hallucination & Accuracy Prevention",
            f"- Never guess or infer details about {subject_short}'s work, roles, or history.",
            "- Never invent a source or URL.",
            "- If the CONTEXT does not support an answer, reply exactly: "
            f"*\"{UNKNOWN_REPLY}\"*",
            "- Never assume a time-sensitive fact (current employer, current role, location) still holds "
            "unless the CONTEXT explicitly confirms it.",
        ]
    )


def _context_catalogue(manifest: Sequence[ManifestEntry]) -> str:
    lines = ["The CONTEXT may include:"]
    for entry in manifest:
        label = f"{DO_NOT_CITE_LABEL} " if not entry.cite else ""
        description = f": {entry.description.strip()}" if entry.description else ""
        lines.append(f"- {label}{entry.file_name}{description}")
    return "\n".join(lines)


def assemble(
    behavior_policy: str,
    retrieval_policy: str,
    manifest: Sequence[ManifestEntry],
    *,
    model: str,
    policy_version: str,
    site_url: str,
    subject_name: str = "",
    subject_short: str = "",
) -> AssembledInstructions:
    """Build system and retrieval instructions for one pipe configuration."""
    values = {
        "subject_name": subject_name,
        "subject_short": subject_short or subject_name,
        "unknown_reply": UNKNOWN_REPLY,
        "site_url": site_url,
    }
    system = "\n\n".join(
        [
            _render(behavior_policy, values),
            _source_policy(manifest, site_url),
            _hallucination_guard(values["subject_short"]),
        ]
    )
    retrieval = "\n\n".join([_render(retrieval_policy, values), _context_catalogue(manifest)])
    return AssembledInstructions(
        system_instructions=system,
        retrieval_instructions=retrieval,
        model=model,
        policy_version=policy_version,
        allowed_citations=allowed_citations(manifest, site_url),
    )


def citable_chunks(chunks: Iterable[RetrievedChunk], manifest: Sequence[ManifestEntry]) -> List[RetrievedChunk]:
    """Chunks whose document may be cited. Unknown documents are not citable."""
    citable = {entry.file_name for entry in manifest if entry.cite}
    return [chunk for chunk in chunks if chunk.document_name in citable]


def format_context(chunks: Sequence[RetrievedChunk], manifest: Sequence[ManifestEntry]) -> str:
    """Render retrieved chunks as the CONTEXT block appended to the instructions."""
    blocked = {entry.file_name for entry in manifest if not entry.cite}
    parts = ["# CONTEXT"]
    for chunk in chunks:
        label = f"{DO_NOT_CITE_LABEL} " if chunk.document_name in blocked else ""
        parts.append(f"## {label}{chunk.document_name}\n{chunk.excerpt.strip()}")
    return "\n\n".join(parts)


def extract_citations(text: str) -> List[Tuple[str, str]]:
    """Return (label, url) for every markdown link in text."""
    return [(m.group(1), m.group(2)) for m in _CITATION_RE.finditer(text or "")]


def enforce_citations(text: str, allowed_urls: Iterable[str]) -> Tuple[str, List[str]]:
    """
    Unlink every citation whose URL is not allow-listed.

    Markdown links keep their label; bare and <angle-bracketed> URLs are
    dropped. Returns the cleaned text and the URLs that were removed.
    """
    allowed = set(allowed_urls)
    removed: List[str] = []

    def _replace(match: "re.Match[str]") -> str:
        url = match.group(2)
        if url in allowed:
            return match.group(0)
        removed.append(url)
        return match.group(1)

    def _replace_bare(match: "re.Match[str]") -> str:
        url = match.group(1) or match.group(2)
        trailing = ""
        if match.group(2):
            url = url.rstrip(".,;:!?'\"")
            trailing = match.group(2)[len(url):]
        if url in allowed:
            return match.group(0)
        removed.append(url)
        return trailing

    cleaned = _CITATION_RE.sub(_replace, text or "")
    linked = len(removed)
    cleaned = _BARE_URL_RE.sub(_replace_bare, cleaned)
    if len(removed) > linked:
        cleaned = re.sub(r"[ \t]+([.,;:!?])", r"\1", re.sub(r"[ \t]{2,}", " ", cleaned))
    return cleaned, removed
