from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from jsonschema import Draft7Validator
from jsonschema import SchemaError as JsonSchemaError

from .errors import SchemaError
from .models import ToolSpec

logger = logging.getLogger("advocado")

SEND_EMAIL = "send_email"

SEND_EMAIL_TOOL = ToolSpec(
    name=SEND_EMAIL,
    description="Send a message via email to Stevanus",
    parameters={
        "type": "object",
        "properties": {
            "subject": {"type": "string", "description": "Subject of the email", "minLength": 1},
            "content": {"type": "string", "description": "Message content for the email", "minLength": 1},
            "senderName": {
                "type": "string",
                "description": "Name of the person sending this message",
                "minLength": 1,
            },
            "senderEmail": {
                "type": "string",
                "description": "Email address of the person sending this message",
                "minLength": 3,
            },
        },
        "required": ["subject", "content", "senderName", "senderEmail"],
        "additionalProperties": False,
    },
)


def _check_spec(spec: ToolSpec) -> None:
    if not spec.name or not spec.name.replace("_", "").isalnum():
        raise SchemaError(f"Tool name must be alphanumeric/underscore: {spec.name!r}")
    params = spec.parameters
    if not isinstance(params, dict) or params.get("type") != "object":
        raise SchemaError(f"Tool '{spec.name}' parameters root type must be 'object'")
    properties = params.get("properties")
    if not isinstance(properties, dict):
        raise SchemaError(f"Tool '{spec.name}' parameters must declare 'properties'")
    required = params.get("required") or []
    if not isinstance(required, list):
        raise SchemaError(f"Tool '{spec.name}' 'required' must be a list")
    missing = [name for name in required if name not in properties]
    if missing:
        raise SchemaError(
            f"Tool '{spec.name}' requires fields missing from properties: {', '.join(missing)}",
            details={"missing": missing},
        )
    for name, prop in properties.items():
        if not isinstance(prop, dict) or "type" not in prop:
            raise SchemaError(f"Tool '{spec.name}' property '{name}' must declare a type")
    try:
        Draft7Validator.check_schema(params)
    except JsonSchemaError as exc:
        raise SchemaError(
            f"Tool '{spec.name}' parameters are not a valid Draft7 JSON schema",
            details={"message": str(exc)},
        ) from exc


class ToolRegistry:
    """Declared tools, keyed by name."""

    def __init__(self) -> None:
        self._tools: Dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> ToolSpec:
        """Validate and register a tool. Raises SchemaError when malformed."""
        _check_spec(spec)
        if spec.name in self._tools:
            logger.info("tool replaced name=%s", spec.name)
        self._tools[spec.name] = spec
        return spec

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def specs(self) -> List[ToolSpec]:
        return list(self._tools.values())

    def validate_arguments(self, name: str, arguments: Mapping[str, Any]) -> List[Dict[str, Any]]:
        """Validate call arguments against the tool schema; returns error dicts."""
        spec = self._tools.get(name)
        if spec is None:
            return [{"path": [], "message": f"Unknown tool: {name}"}]
        validator = Draft7Validator(spec.parameters)
        return [{"path": list(err.path), "message": err.message} for err in validator.iter_errors(dict(arguments))]

    def declarations(self) -> List[Dict[str, Any]]:
        """Tools in the OpenAI function-calling shape."""
        return [to_declaration(spec) for spec in self._tools.values()]


def to_declaration(spec: ToolSpec) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": spec.name,
            "description": spec.description,
            "parameters": spec.parameters,
        },
    }


def build_default_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(SEND_EMAIL_TOOL)
    return registry
