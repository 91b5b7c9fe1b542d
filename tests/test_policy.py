from __future__ import annotations

from advocado.models import ManifestEntry, RetrievedChunk
from advocado.pipe_loader import load_pipe_preset
from advocado.policy import (
    UNKNOWN_REPLY,
    allowed_citations,
    assemble,
    citable_chunks,
    enforce_citations,
    extract_citations,
    format_context,
)

SITE = "https://stevanussatria.com"

MANIFEST = [
    ManifestEntry(source_dir="frontend/docs", file_name="index.md", description="Profile"),
    ManifestEntry(source_dir="frontend/docs", file_name="resume.md"),
    ManifestEntry(source_dir="private", file_name="supplementary.md", cite=False),
]


def _assemble():
    return assemble(
        "You represent {subject_name}. Unknown facts: {unknown_reply}",
        "Answer from the CONTEXT about {subject_short}.",
        MANIFEST,
        model="openai:gpt-4.1-nano",
        policy_version="2025.1",
        site_url=SITE,
        subject_name="Stevanus Satria",
        subject_short="Steve",
    )


def test_assemble_is_deterministic_and_tagged():
    first = _assemble()
    second = _assemble()
    assert first == second
    assert first.model == "openai:gpt-4.1-nano"
    assert first.policy_version == "2025.1"


def test_assemble_renders_placeholders_and_rules():
    result = _assemble()
    system = result.system_instructions

    assert "You represent Stevanus Satria." in system
    assert UNKNOWN_REPLY in system
    assert f"{SITE}/index.html" in system
    assert f"{SITE}/resume.html" in system
    assert f"{SITE}/supplementary.html" not in system
    assert "Never cite these documents" in system and "supplementary.md" in system
    assert "time-sensitive" in system

    retrieval = result.retrieval_instructions
    assert "Answer from the CONTEXT about Steve." in retrieval
    assert "- index.md: Profile" in retrieval
    assert "- [DO NOT CITE] supplementary.md" in retrieval


def test_allowed_citations_only_for_citable_documents():
    assert allowed_citations(MANIFEST, SITE + "/") == {
        "index.md": f"{SITE}/index.html",
        "resume.md": f"{SITE}/resume.html",
    }


def test_context_labels_do_not_cite_documents():
    chunks = [
        RetrievedChunk(document_name="resume.md", excerpt="Worked at Acme.", score=0.9),
        RetrievedChunk(document_name="supplementary.md", excerpt="Likes bikes.", score=0.5),
    ]
    context = format_context(chunks, MANIFEST)
    assert context.startswith("# CONTEXT")
    assert "## resume.md\nWorked at Acme." in context
    assert "## [DO NOT CITE] supplementary.md\nLikes bikes." in context
    assert [c.document_name for c in citable_chunks(chunks, MANIFEST)] == ["resume.md"]


def test_unknown_documents_are_not_citable():
    chunks = [RetrievedChunk(document_name="other.md", excerpt="x", score=1.0)]
    assert citable_chunks(chunks, MANIFEST) == []


def test_enforce_citations_unlinks_disallowed_urls():
    text = f"See [resume]({SITE}/resume.html), [extra]({SITE}/supplementary.html) and [made up](https://x.io/a)."
    cleaned, removed = enforce_citations(text, [f"{SITE}/resume.html"])

    assert cleaned == f"See [resume]({SITE}/resume.html), extra and made up."
    assert removed == [f"{SITE}/supplementary.html", "https://x.io/a"]
    assert extract_citations(cleaned) == [("resume", f"{SITE}/resume.html")]


def test_enforce_citations_drops_bare_and_angle_bracketed_urls():
    text = (
        f"See {SITE}/supplementary.html for more. "
        f"His resume is at {SITE}/resume.html, or ask <https://x.io/a>."
    )
    cleaned, removed = enforce_citations(text, [f"{SITE}/resume.html"])

    assert cleaned == f"See for more. His resume is at {SITE}/resume.html, or ask."
    assert removed == [f"{SITE}/supplementary.html", "https://x.io/a"]


def test_canonical_preset_manifest():
    preset = load_pipe_preset("advocado")
    names = [d.file_name for d in preset.documents]
    assert names == [
        "index.md",
        "resume.md",
        "projects.md",
        "milestones.md",
        "recommendations.md",
        "stack.md",
        "gear.md",
        "supplementary.md",
    ]
    assert [d.file_name for d in preset.documents if not d.cite] == ["supplementary.md"]
    assert preset.policy_version == "2025.1"
    assert preset.model == "openai:gpt-4.1-nano"
