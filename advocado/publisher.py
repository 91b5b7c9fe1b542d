"""
Pipe configuration publishing.

A pipe is the deployable bundle of instructions, tools and bound memory.
Publishing always sends the full configuration; the hosting capability never
sees a partial update. Identical content is detected by hash and skipped.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import Any, Dict, List, Optional

from .config import Settings
from .errors import PublishError
from .models import AgentConfiguration, PublishResult
from .pipe_loader import PipePreset
from .policy import assemble
from .storage import pipe_store
from .tools import ToolRegistry, to_declaration

logger = logging.getLogger("advocado")

LANGBASE_API_URL = "https://api.langbase.com"


def build_configuration(preset: PipePreset, tools: ToolRegistry) -> AgentConfiguration:
    """Compile a preset and the registered tools into an AgentConfiguration."""
    assembled = assemble(
        preset.behavior_policy,
        preset.retrieval_policy,
        preset.documents,
        model=preset.model,
        policy_version=preset.policy_version,
        site_url=preset.site_url,
        subject_name=preset.subject_name,
        subject_short=preset.subject_short,
    )
    return AgentConfiguration(
        name=preset.id,
        description=preset.description,
        model=assembled.model,
        policy_version=assembled.policy_version,
        system_instructions=assembled.system_instructions,
        retrieval_instructions=assembled.retrieval_instructions,
        tools=tools.specs(),
        memory_name=preset.memory_name,
        manifest=list(preset.documents),
        site_url=preset.site_url,
    )


def pipe_payload(name: str, config: AgentConfiguration) -> Dict[str, Any]:
    """The full pipe body sent to the host."""
    return {
        "name": name,
        "description": config.description,
        "model": config.model,
        "json": False,
        "tools": [to_declaration(spec) for spec in config.tools],
        "memory": [{"name": config.memory_name}],
        "messages": [
            {"role": "system", "content": config.system_instructions},
            {"role": "system", "name": "rag", "content": config.retrieval_instructions},
        ],
        "variables": [],
    }


def content_hash(payload: Dict[str, Any], policy_version: str) -> str:
    canonical = json.dumps({"payload": payload, "policy_version": policy_version}, sort_keys=True)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ConfigurationHolder:
    """The configuration new conversations start from; swapped as a whole."""

    def __init__(self, config: AgentConfiguration) -> None:
        self._lock = threading.Lock()
        self._config = config

    def current(self) -> AgentConfiguration:
        with self._lock:
            return self._config

    def replace(self, config: AgentConfiguration) -> None:
        with self._lock:
            self._config = config


class BasePipeHost:
    def update_pipe(self, name: str, payload: Dict[str, Any]) -> Dict[str, Any]:  # pragma: no cover - interface only
        raise NotImplementedError


class StubPipeHost(BasePipeHost):
    """Keeps published pipes in memory."""

    def __init__(self) -> None:
        self.pipes: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []

    def update_pipe(self, name: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(name)
        self.pipes[name] = json.loads(json.dumps(payload))
        return {"name": name, "status": "updated"}


class LangbasePipeHost(BasePipeHost):
    """Creates or replaces a Langbase pipe."""

    def __init__(self, api_key: str, *, timeout: float = 30.0, base_url: str = LANGBASE_API_URL) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")

    def update_pipe(self, name: str, payload: Dict[str, Any]) -> Dict[str, Any]:  # pragma: no cover - network
        import httpx

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        body = dict(payload, name=name, upsert=True)
        try:
            resp = httpx.post(f"{self.base_url}/v1/pipes", headers=headers, json=body, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            raise PublishError(
                f"Pipe host rejected {name}",
                details={"status": exc.response.status_code, "body": exc.response.text[:500]},
            ) from exc
        except httpx.HTTPError as exc:
            raise PublishError(f"Publishing {name} failed: {exc}") from exc
        except ValueError as exc:
            raise PublishError("Pipe host returned a non-JSON body") from exc


def build_pipe_host(settings: Settings) -> BasePipeHost:
    if settings.memory_backend == "langbase" and settings.langbase_api_key:
        return LangbasePipeHost(api_key=settings.langbase_api_key, timeout=settings.request_timeout)
    return StubPipeHost()


class PipePublisher:
    """Publishes configurations and records every version."""

    def __init__(self, host: BasePipeHost, db_path: str, holder: Optional[ConfigurationHolder] = None) -> None:
        self.host = host
        self.db_path = db_path
        self.holder = holder

    def publish(self, name: str, config: AgentConfiguration, *, force: bool = False) -> PublishResult:
        """
        Publish `config` under `name`, replacing whatever was there.

        Raises SchemaError for malformed tools (nothing is published) and
        PublishError when the host refuses the configuration.
        """
        registry = ToolRegistry()
        for spec in config.tools:
            registry.register(spec)

        payload = pipe_payload(name, config)
        digest = content_hash(payload, config.policy_version)

        previous = pipe_store.latest(self.db_path, name)
        if previous and previous["content_hash"] == digest and not force:
            logger.info("publish pipe=%s version=%s unchanged", name, previous["version"])
            if self.holder is not None:
                self.holder.replace(config)
            return PublishResult(name=name, version=int(previous["version"]), content_hash=digest, changed=False)

        try:
            self.host.update_pipe(name, payload)
        except PublishError:
            raise
        except Exception as exc:
            raise PublishError(f"Publishing {name} failed: {exc}") from exc

        version = pipe_store.record_publish(
            self.db_path,
            name,
            content_hash=digest,
            model=config.model,
            policy_version=config.policy_version,
            config=config.model_dump(),
        )
        if self.holder is not None:
            self.holder.replace(config)
        logger.info(
            "publish pipe=%s version=%d model=%s policy_version=%s hash=%s",
            name,
            version,
            config.model,
            config.policy_version,
            digest[:12],
        )
        return PublishResult(name=name, version=version, content_hash=digest, changed=True)
