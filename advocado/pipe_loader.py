from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml
from jsonschema import Draft7Validator

from .errors import PipeLoadError
from .models import ManifestEntry

logger = logging.getLogger("advocado")

# Pipe preset YAML files live beside this module (advocado/presets/*.yaml).
PRESETS_DIR = Path(__file__).parent / "presets"

PRESET_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": [
        "id",
        "policy_version",
        "model",
        "memory_name",
        "site_url",
        "documents",
        "behavior_policy",
        "retrieval_policy",
    ],
    "properties": {
        "id": {"type": "string", "pattern": "^[a-z0-9][a-z0-9_-]{1,62}$"},
        "policy_version": {"type": "string", "minLength": 1},
        "name": {"type": "string"},
        "description": {"type": "string"},
        "model": {"type": "string", "minLength": 1},
        "memory_name": {"type": "string", "minLength": 1},
        "site_url": {"type": "string"},
        "subject_name": {"type": "string"},
        "subject_short": {"type": "string"},
        "documents": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["source_dir", "file_name"],
                "properties": {
                    "source_dir": {"type": "string"},
                    "file_name": {"type": "string", "minLength": 1},
                    "description": {"type": "string"},
                    "cite": {"type": "boolean"},
                },
            },
        },
        "behavior_policy": {"type": "string", "minLength": 1},
        "retrieval_policy": {"type": "string", "minLength": 1},
    },
}


@dataclass
class PipePreset:
    id: str
    policy_version: str
    name: str
    description: str
    model: str
    memory_name: str
    site_url: str
    subject_name: str
    subject_short: str
    behavior_policy: str
    retrieval_policy: str
    documents: List[ManifestEntry] = field(default_factory=list)


def _read_preset_yaml(preset_id: str) -> Dict[str, Any]:
    preset_path = PRESETS_DIR / f"{preset_id}.yaml"
    if not preset_path.exists():
        raise PipeLoadError(f"Pipe preset file not found: {preset_path}")

    with preset_path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise PipeLoadError("Pipe preset YAML must deserialize to a mapping")

    return data


def parse_pipe_preset(raw: Dict[str, Any]) -> PipePreset:
    """Validate a raw preset mapping and build a PipePreset."""
    errors = sorted(Draft7Validator(PRESET_SCHEMA).iter_errors(raw), key=lambda e: list(e.path))
    if errors:
        details = [{"path": list(err.path), "message": err.message} for err in errors]
        raise PipeLoadError("Pipe preset failed validation", details=details)

    documents = [ManifestEntry(**entry) for entry in raw["documents"]]
    names = [doc.file_name for doc in documents]
    if len(set(names)) != len(names):
        raise PipeLoadError("Pipe preset lists the same document name twice")

    return PipePreset(
        id=str(raw["id"]),
        policy_version=str(raw["policy_version"]),
        name=str(raw.get("name", raw["id"])),
        description=str(raw.get("description", "")),
        model=str(raw["model"]),
        memory_name=str(raw["memory_name"]),
        site_url=str(raw["site_url"]).rstrip("/"),
        subject_name=str(raw.get("subject_name", "")),
        subject_short=str(raw.get("subject_short", raw.get("subject_name", ""))),
        behavior_policy=str(raw["behavior_policy"]),
        retrieval_policy=str(raw["retrieval_policy"]),
        documents=documents,
    )


def load_pipe_preset(preset_id: str) -> PipePreset:
    """Load and validate a pipe preset by id."""
    return parse_pipe_preset(_read_preset_yaml(preset_id))


def list_preset_ids() -> List[str]:
    """Discover preset ids from advocado/presets/*.yaml (filename stem = id)."""
    if not PRESETS_DIR.exists():
        return []
    return sorted(p.stem for p in PRESETS_DIR.glob("*.yaml") if p.is_file())
