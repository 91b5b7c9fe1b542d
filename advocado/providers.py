from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from .config import Settings
from .errors import LanguageCapabilityError
from .models import ChatMessage, Completion, ToolCall
from .policy import DO_NOT_CITE_LABEL, UNKNOWN_REPLY

logger = logging.getLogger("advocado")

OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"
OPENROUTER_API_URL = "https://openrouter.ai/api/v1/chat/completions"


class BaseProvider:
    """
    Language capability interface.

    `complete` is synchronous; the HTTP layer runs conversation turns in a
    worker thread.
    """

    def complete(
        self,
        instructions: Sequence[str],
        tools: Sequence[Dict[str, Any]],
        context: str,
        history: Sequence[ChatMessage],
    ) -> Completion:  # pragma: no cover - interface only
        raise NotImplementedError


def _context_sections(context: str) -> List[tuple]:
    """Split a rendered CONTEXT block into (document_name, excerpt, citable)."""
    sections = []
    for block in context.split("\n\n## ")[1:]:
        header, _, body = block.partition("\n")
        citable = not header.startswith(DO_NOT_CITE_LABEL)
        name = header.replace(DO_NOT_CITE_LABEL, "").strip()
        sections.append((name, body.strip(), citable))
    return sections


class StubProvider(BaseProvider):
    """
    Deterministic provider that answers from the first citable excerpt.

    It never adds facts that are not in the context, which keeps local runs
    and tests honest without a network.
    """

    def complete(
        self,
        instructions: Sequence[str],
        tools: Sequence[Dict[str, Any]],
        context: str,
        history: Sequence[ChatMessage],
    ) -> Completion:
        for name, excerpt, citable in _context_sections(context):
            if citable and excerpt:
                return Completion(text=f"From {name}: {excerpt[:400]}")
        return Completion(text=UNKNOWN_REPLY)


def _messages(
    instructions: Sequence[str],
    context: str,
    history: Sequence[ChatMessage],
) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = [{"role": "system", "content": text} for text in instructions if text]
    if context:
        messages.append({"role": "system", "name": "context", "content": context})
    messages.extend({"role": m.role, "content": m.content} for m in history)
    return messages


def _parse_tool_calls(message: Dict[str, Any]) -> List[ToolCall]:
    calls: List[ToolCall] = []
    for raw in message.get("tool_calls") or []:
        fn = raw.get("function") or {}
        try:
            arguments = json.loads(fn.get("arguments") or "{}")
        except json.JSONDecodeError:
            logger.warning("tool call %s had non-JSON arguments; ignoring them", fn.get("name"))
            arguments = {}
        if not isinstance(arguments, dict):
            arguments = {}
        calls.append(ToolCall(id=raw.get("id"), name=str(fn.get("name") or ""), arguments=arguments))
    return calls


class ChatCompletionsProvider(BaseProvider):
    """Shared client for OpenAI-compatible chat-completions endpoints."""

    api_url = OPENAI_API_URL

    def __init__(self, api_key: str, model: str, *, timeout: float = 30.0) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def complete(
        self,
        instructions: Sequence[str],
        tools: Sequence[Dict[str, Any]],
        context: str,
        history: Sequence[ChatMessage],
    ) -> Completion:  # pragma: no cover - network
        import httpx

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": _messages(instructions, context, history),
        }
        if tools:
            body["tools"] = list(tools)
            body["tool_choice"] = "auto"

        try:
            resp = httpx.post(self.api_url, headers=headers, json=body, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
            message = data["choices"][0]["message"]
        except httpx.TimeoutException as exc:
            raise LanguageCapabilityError("Language model timed out") from exc
        except httpx.HTTPError as exc:
            raise LanguageCapabilityError(f"Language model request failed: {exc}") from exc
        except (KeyError, IndexError, ValueError) as exc:
            raise LanguageCapabilityError("Language model returned an unexpected body") from exc

        return Completion(text=message.get("content") or "", tool_calls=_parse_tool_calls(message))


class OpenAIProvider(ChatCompletionsProvider):
    api_url = OPENAI_API_URL


class OpenRouterProvider(ChatCompletionsProvider):
    """OpenRouter provider: one API key, many models (OpenAI, Claude, Gemini, etc.)."""

    api_url = OPENROUTER_API_URL


def _split_model(model: str) -> tuple:
    """'openai:gpt-4.1-nano' -> ('openai', 'gpt-4.1-nano')."""
    vendor, sep, name = model.partition(":")
    if not sep:
        return "", model
    return vendor, name


def build_provider(settings: Settings, model: Optional[str] = None) -> BaseProvider:
    """Factory that chooses the concrete provider implementation."""
    vendor, name = _split_model(model or "openai:gpt-4.1-nano")
    timeout = settings.request_timeout

    if settings.provider_name == "openrouter":
        if not settings.openrouter_api_key:
            return StubProvider()
        routed = settings.openrouter_model or (f"{vendor}/{name}" if vendor else name)
        return OpenRouterProvider(api_key=settings.openrouter_api_key, model=routed, timeout=timeout)
    if settings.provider_name == "openai":
        if not settings.openai_api_key:
            return StubProvider()
        return OpenAIProvider(api_key=settings.openai_api_key, model=name, timeout=timeout)

    return StubProvider()
