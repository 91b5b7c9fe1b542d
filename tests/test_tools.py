from __future__ import annotations

import pytest

from advocado.errors import SchemaError
from advocado.models import ToolSpec
from advocado.tools import SEND_EMAIL, SEND_EMAIL_TOOL, ToolRegistry, build_default_registry


def _spec(parameters) -> ToolSpec:
    return ToolSpec(name="lookup", description="Look something up", parameters=parameters)


def test_default_registry_declares_send_email():
    registry = build_default_registry()
    assert registry.names() == [SEND_EMAIL]

    declaration = registry.declarations()[0]
    assert declaration["type"] == "function"
    fn = declaration["function"]
    assert fn["name"] == "send_email"
    assert sorted(fn["parameters"]["required"]) == ["content", "senderEmail", "senderName", "subject"]
    assert all(fn["parameters"]["properties"][k]["type"] == "string" for k in fn["parameters"]["required"])


def test_required_field_missing_from_properties_is_schema_error():
    registry = ToolRegistry()
    with pytest.raises(SchemaError) as exc:
        registry.register(
            _spec({"type": "object", "properties": {"q": {"type": "string"}}, "required": ["q", "limit"]})
        )
    assert exc.value.details == {"missing": ["limit"]}
    assert registry.names() == []


def test_non_object_root_is_schema_error():
    with pytest.raises(SchemaError):
        ToolRegistry().register(_spec({"type": "array", "items": {"type": "string"}}))


def test_property_without_type_is_schema_error():
    with pytest.raises(SchemaError):
        ToolRegistry().register(_spec({"type": "object", "properties": {"q": {"description": "query"}}}))


def test_invalid_draft7_schema_is_schema_error():
    with pytest.raises(SchemaError):
        ToolRegistry().register(_spec({"type": "object", "properties": {"q": {"type": "strng"}}}))


def test_duplicate_registration_replaces():
    registry = ToolRegistry()
    registry.register(SEND_EMAIL_TOOL)
    changed = SEND_EMAIL_TOOL.model_copy(update={"description": "Send a note"})
    registry.register(changed)
    assert registry.names() == [SEND_EMAIL]
    assert registry.get(SEND_EMAIL).description == "Send a note"


def test_validate_arguments():
    registry = build_default_registry()
    ok = {"subject": "Hi", "content": "Hello", "senderName": "Jane", "senderEmail": "jane@example.com"}
    assert registry.validate_arguments(SEND_EMAIL, ok) == []

    problems = registry.validate_arguments(SEND_EMAIL, {"subject": "Hi", "content": ""})
    messages = " ".join(p["message"] for p in problems)
    assert "senderName" in messages
    assert "senderEmail" in messages

    assert registry.validate_arguments("unknown", {}) == [{"path": [], "message": "Unknown tool: unknown"}]
