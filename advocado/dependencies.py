from __future__ import annotations

import logging
import threading
from typing import Optional

from fastapi import Request

from .config import Settings, get_settings
from .errors import AdvocadoError
from .mailer import BaseMailer, build_mailer
from .memory import BaseMemory, build_memory
from .orchestrator import SessionManager
from .pipe_loader import load_pipe_preset
from .providers import BaseProvider, build_provider
from .publisher import ConfigurationHolder, PipePublisher, build_configuration, build_pipe_host
from .tools import ToolRegistry, build_default_registry

logger = logging.getLogger("advocado")

_lock = threading.Lock()
_holder: Optional[ConfigurationHolder] = None
_manager: Optional[SessionManager] = None
_memory: Optional[BaseMemory] = None


def get_tools() -> ToolRegistry:
    return build_default_registry()


def get_holder() -> ConfigurationHolder:
    """The active configuration, compiled from the configured pipe preset on first use."""
    global _holder
    with _lock:
        if _holder is None:
            settings = get_settings()
            preset = load_pipe_preset(settings.pipe_preset)
            _holder = ConfigurationHolder(build_configuration(preset, get_tools()))
        return _holder


def get_provider() -> BaseProvider:
    """
    Dependency returning the active language provider.

    Tests override this (and get_memory/get_mailer) through FastAPI's
    dependency_overrides or by calling reset_state() with fakes.
    """
    return build_provider(get_settings(), get_holder().current().model)


def get_memory() -> BaseMemory:
    global _memory
    with _lock:
        if _memory is None:
            _memory = build_memory(get_settings())
        return _memory


def get_mailer() -> BaseMailer:
    return build_mailer(get_settings())


def get_session_manager() -> SessionManager:
    """Process-wide session manager; built lazily so tests can swap collaborators first."""
    global _manager
    holder = get_holder()
    memory = get_memory()
    with _lock:
        if _manager is None:
            settings = get_settings()
            preset = load_pipe_preset(settings.pipe_preset)
            _manager = SessionManager(
                holder,
                provider=get_provider(),
                memory=memory,
                mailer=get_mailer(),
                tools=get_tools(),
                subject=preset.subject_short or "Steve",
                min_score=settings.min_score,
                top_k=settings.top_k,
            )
        return _manager


def get_publisher(settings: Optional[Settings] = None) -> PipePublisher:
    settings = settings or get_settings()
    return PipePublisher(build_pipe_host(settings), settings.db_path, holder=get_holder())


def reset_state(
    *,
    manager: Optional[SessionManager] = None,
    memory: Optional[BaseMemory] = None,
    holder: Optional[ConfigurationHolder] = None,
) -> None:
    """Drop cached singletons (or install replacements)."""
    global _manager, _memory, _holder
    with _lock:
        _manager = manager
        _memory = memory
        _holder = holder


def enforce_auth(request: Request) -> None:
    """
    Auth guard used by admin endpoints.

    If AUTH_TOKEN is set, accept only that bearer token. If it is unset,
    authentication is disabled (local development and tests).
    """
    settings = get_settings()
    if not settings.auth_token:
        return
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise AuthError("Missing or invalid Authorization header")
    supplied = auth_header.split(" ", 1)[1].strip()
    if supplied != settings.auth_token:
        raise AuthError("Invalid bearer token")


class AuthError(AdvocadoError):
    """Raised when authentication fails."""
