from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import pytest

from advocado.errors import PublishError, SchemaError
from advocado.models import ToolSpec
from advocado.pipe_loader import load_pipe_preset
from advocado.publisher import (
    BasePipeHost,
    ConfigurationHolder,
    PipePublisher,
    StubPipeHost,
    build_configuration,
    pipe_payload,
)
from advocado.storage import pipe_store
from advocado.tools import build_default_registry


class RefusingHost(BasePipeHost):
    def update_pipe(self, name: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        raise RuntimeError("502 bad gateway")


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "pipes.db")


@pytest.fixture
def config():
    return build_configuration(load_pipe_preset("advocado"), build_default_registry())


def test_payload_carries_full_configuration(config):
    payload = pipe_payload("advocado", config)

    assert payload["name"] == "advocado"
    assert payload["model"] == "openai:gpt-4.1-nano"
    assert payload["json"] is False
    assert payload["memory"] == [{"name": "advocado-memory"}]
    assert payload["tools"][0]["function"]["name"] == "send_email"
    assert payload["messages"][0] == {"role": "system", "content": config.system_instructions}
    assert payload["messages"][1]["name"] == "rag"
    assert payload["variables"] == []


def test_publish_records_version_and_swaps_active_config(config, db_path):
    host = StubPipeHost()
    holder = ConfigurationHolder(config.model_copy(update={"policy_version": "2024.9"}))
    result = PipePublisher(host, db_path, holder=holder).publish("advocado", config)

    assert result.changed is True
    assert result.version == 1
    assert host.calls == ["advocado"]
    assert host.pipes["advocado"]["memory"] == [{"name": "advocado-memory"}]
    assert holder.current() == config

    latest = pipe_store.latest(db_path, "advocado")
    assert latest["content_hash"] == result.content_hash
    assert latest["config"]["policy_version"] == "2025.1"


def test_identical_republish_is_a_noop(config, db_path):
    host = StubPipeHost()
    publisher = PipePublisher(host, db_path)

    first = publisher.publish("advocado", config)
    second = publisher.publish("advocado", config)

    assert second.changed is False
    assert second.version == first.version
    assert host.calls == ["advocado"]
    assert len(pipe_store.history(db_path, "advocado")) == 1


def test_changed_configuration_gets_new_version(config, db_path):
    host = StubPipeHost()
    publisher = PipePublisher(host, db_path)

    publisher.publish("advocado", config)
    result = publisher.publish("advocado", config.model_copy(update={"policy_version": "2025.2"}))

    assert result.changed is True
    assert result.version == 2
    assert [row["policy_version"] for row in pipe_store.history(db_path, "advocado")] == ["2025.1", "2025.2"]


def test_force_republishes_identical_content(config, db_path):
    host = StubPipeHost()
    publisher = PipePublisher(host, db_path)
    publisher.publish("advocado", config)
    result = publisher.publish("advocado", config, force=True)
    assert result.version == 2
    assert host.calls == ["advocado", "advocado"]


def test_schema_error_blocks_publish(config, db_path):
    broken = ToolSpec(
        name="send_email",
        description="broken",
        parameters={"type": "object", "properties": {"subject": {"type": "string"}}, "required": ["content"]},
    )
    host = StubPipeHost()

    with pytest.raises(SchemaError):
        PipePublisher(host, db_path).publish("advocado", config.model_copy(update={"tools": [broken]}))

    assert host.calls == []
    assert pipe_store.latest(db_path, "advocado") is None


def test_host_failure_raises_publish_error_and_keeps_state(config, db_path):
    holder = ConfigurationHolder(config.model_copy(update={"policy_version": "2024.9"}))

    with pytest.raises(PublishError):
        PipePublisher(RefusingHost(), db_path, holder=holder).publish("advocado", config)

    assert holder.current().policy_version == "2024.9"
    assert pipe_store.latest(db_path, "advocado") is None
