"""
Conversation orchestration.

A ConversationSession owns the contact-workflow state of one conversation and
runs each user turn: parse, pure transition, then execute the effects
(grounded answers, the email send). Turns of one session are serialized by a
per-session lock; sessions share no mutable state with each other.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import AdvocadoError, LanguageCapabilityError, RetrievalError, ToolInvocationError
from .mailer import BaseMailer
from .memory import BaseMemory
from .models import AgentConfiguration, ChatMessage, Completion
from .policy import UNKNOWN_REPLY, allowed_citations, citable_chunks, enforce_citations, format_context
from .providers import BaseProvider
from .publisher import ConfigurationHolder
from .slots import (
    FIELD_ARGUMENTS,
    AnswerQuestion,
    Answering,
    CollectedFields,
    ContactRequested,
    Invalid,
    ReadyToSend,
    Say,
    SendEmail,
    Sent,
    SlotState,
    Transition,
    after_send,
    describe,
    parse_turn,
    transition,
    values_from_tool_arguments,
)
from .tools import SEND_EMAIL, ToolRegistry, to_declaration

logger = logging.getLogger("advocado")

APOLOGY = "Sorry, I'm having trouble answering right now. Please try again in a moment."
HISTORY_LIMIT = 10


class SessionClosed(AdvocadoError):
    """A turn arrived for a conversation that has ended."""


@dataclass
class TurnResult:
    reply: str
    state: SlotState
    email_sent: bool
    error: Optional[str] = None
    retryable: bool = False
    citations: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "reply": self.reply,
            "state": describe(self.state),
            "email_sent": self.email_sent,
            "error": self.error,
            "retryable": self.retryable,
            "citations": self.citations,
        }


@dataclass
class _Answer:
    text: Optional[str] = None
    contact: Optional[ContactRequested] = None
    error: Optional[str] = None
    retryable: bool = False
    citations: List[str] = field(default_factory=list)


def _call_provider(
    provider: BaseProvider,
    instructions: List[str],
    tools: List[Dict[str, Any]],
    context: str,
    history: List[ChatMessage],
) -> Completion:
    """
    Invoke the provider.

    Test doubles may be plain callables returning a Completion, a dict or a
    string; adapt those into a Completion.
    """
    if not callable(getattr(provider, "complete", None)):
        raw = provider(instructions=instructions, tools=tools, context=context, history=history)  # type: ignore[operator]
    else:
        raw = provider.complete(instructions, tools, context, history)
    if isinstance(raw, Completion):
        return raw
    if isinstance(raw, dict):
        return Completion(**raw)
    if isinstance(raw, str):
        return Completion(text=raw)
    raise LanguageCapabilityError("Provider returned unsupported result type")


class ConversationSession:
    """One conversation: contact-workflow state, history and the single-send flag."""

    def __init__(
        self,
        session_id: str,
        config: AgentConfiguration,
        *,
        provider: BaseProvider,
        memory: BaseMemory,
        mailer: BaseMailer,
        tools: ToolRegistry,
        subject: str = "Steve",
        min_score: float = 0.0,
        top_k: int = 5,
    ) -> None:
        self.session_id = session_id
        self.config = config
        self.provider = provider
        self.memory = memory
        self.mailer = mailer
        self.tools = tools
        self.subject = subject
        self.min_score = min_score
        self.top_k = top_k

        self.state: SlotState = Answering()
        self.fields = CollectedFields()
        self.email_sent = False
        self.send_calls = 0
        self.history: List[ChatMessage] = []
        self.closed = False
        self.created_at = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        self._lock = threading.Lock()
        self._citation_urls = allowed_citations(config.manifest, config.site_url)

    # -- turns ---------------------------------------------------------------

    def handle(self, text: str) -> TurnResult:
        """Run one user turn. Blocks while a previous turn of this session is running."""
        with self._lock:
            if self.closed:
                raise SessionClosed(f"Conversation {self.session_id} has ended")
            start = time.monotonic()
            event = parse_turn(self.state, text, self.fields)
            step = transition(self.state, self.fields, self.email_sent, event, subject=self.subject)
            result = self._run(step)

            self.history.append(ChatMessage(role="user", content=text))
            self.history.append(ChatMessage(role="assistant", content=result.reply))
            logger.info(
                "turn session=%s event=%s state=%s email_sent=%s error=%s latency_ms=%.2f",
                self.session_id,
                type(event).__name__,
                type(result.state).__name__,
                result.email_sent,
                result.error,
                (time.monotonic() - start) * 1000.0,
            )
            return result

    def close(self) -> None:
        with self._lock:
            self.closed = True

    def snapshot(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "pipe": self.config.name,
            "policy_version": self.config.policy_version,
            "created_at": self.created_at,
            "state": describe(self.state),
            "email_sent": self.email_sent,
            "messages": [m.model_dump() for m in self.history],
        }

    # -- effects -------------------------------------------------------------

    def _run(self, step: Transition) -> TurnResult:
        replies: List[str] = []
        error: Optional[str] = None
        retryable = False
        citations: List[str] = []

        for effect in step.effects:
            if isinstance(effect, Say):
                replies.append(effect.message)
            elif isinstance(effect, Invalid):
                logger.info(
                    "validation failed session=%s field=%d: %s",
                    self.session_id,
                    effect.error.field_index,
                    effect.error.message,
                )
                replies.append(effect.error.message)
            elif isinstance(effect, AnswerQuestion):
                answer = self._answer(effect.text)
                if answer.contact is not None:
                    nested = transition(step.state, step.fields, self.email_sent, answer.contact, subject=self.subject)
                    return self._run(nested)
                replies.append(answer.text or UNKNOWN_REPLY)
                error, retryable, citations = answer.error, answer.retryable, answer.citations
            elif isinstance(effect, SendEmail):
                step, message = self._send(step, effect)
                replies.append(message)

        self.state = step.state
        self.fields = step.fields
        return TurnResult(
            reply="\n\n".join(r for r in replies if r),
            state=self.state,
            email_sent=self.email_sent,
            error=error,
            retryable=retryable,
            citations=citations,
        )

    def _send(self, step: Transition, effect: SendEmail) -> Tuple[Transition, str]:
        arguments = dict(effect.arguments)
        missing = [name for name in FIELD_ARGUMENTS if not arguments.get(name)]
        problems = self.tools.validate_arguments(SEND_EMAIL, arguments)
        if self.email_sent or missing or problems or not isinstance(step.state, ReadyToSend):
            # The state machine never emits SendEmail in these cases.
            raise ToolInvocationError(
                "Refusing to send email",
                details={"email_sent": self.email_sent, "missing": missing, "problems": problems},
            )

        self.send_calls += 1
        try:
            self.mailer.send_email(
                subject=arguments["subject"],
                content=arguments["content"],
                sender_name=arguments["senderName"],
                sender_email=arguments["senderEmail"],
            )
            ok = True
        except ToolInvocationError as exc:
            logger.warning("send_email failed session=%s attempt=%d: %s", self.session_id, step.state.attempts + 1, exc)
            ok = False
        except Exception:
            logger.exception("send_email raised session=%s attempt=%d", self.session_id, step.state.attempts + 1)
            ok = False

        resolved = after_send(step.state, step.fields, ok, subject=self.subject)
        if isinstance(resolved.state, Sent):
            self.email_sent = True
        messages = [e.message for e in resolved.effects if isinstance(e, Say)]
        return resolved, " ".join(messages)

    def _answer(self, text: str) -> _Answer:
        config = self.config
        try:
            chunks = self.memory.retrieve(text, config.memory_name, top_k=self.top_k)
        except RetrievalError as exc:
            logger.warning("retrieval failed session=%s: %s", self.session_id, exc)
            return _Answer(text=UNKNOWN_REPLY, error="retrieval_error", retryable=True)

        chunks = [c for c in chunks if c.score >= self.min_score]
        citable = citable_chunks(chunks, config.manifest)
        if not citable:
            return _Answer(text=UNKNOWN_REPLY)

        context = format_context(chunks, config.manifest)
        recent = self.history[-HISTORY_LIMIT:] + [ChatMessage(role="user", content=text)]
        try:
            completion = _call_provider(
                self.provider,
                [config.system_instructions, config.retrieval_instructions],
                [to_declaration(spec) for spec in config.tools],
                context,
                recent,
            )
        except LanguageCapabilityError as exc:
            logger.warning("language capability failed session=%s: %s", self.session_id, exc)
            return _Answer(text=APOLOGY, error="language_unavailable", retryable=True)

        for call in completion.tool_calls:
            if call.name == SEND_EMAIL:
                logger.info(
                    "tool call session=%s tool=%s arguments=%s",
                    self.session_id,
                    call.name,
                    json.dumps(sorted(call.arguments)),
                )
                return _Answer(contact=ContactRequested(text, values_from_tool_arguments(call.arguments)))
            logger.warning("ignoring unknown tool call session=%s tool=%s", self.session_id, call.name)

        allowed = {self._citation_urls[c.document_name] for c in citable if c.document_name in self._citation_urls}
        answer, removed = enforce_citations(completion.text, allowed)
        if removed:
            logger.info("removed citations session=%s urls=%s", self.session_id, removed)
        if not answer.strip():
            return _Answer(text=UNKNOWN_REPLY)
        kept = [url for url in allowed if url in answer]
        return _Answer(text=answer, citations=sorted(kept))


class SessionManager:
    """Creates, tracks and ends conversation sessions."""

    def __init__(
        self,
        holder: ConfigurationHolder,
        *,
        provider: BaseProvider,
        memory: BaseMemory,
        mailer: BaseMailer,
        tools: ToolRegistry,
        subject: str = "Steve",
        min_score: float = 0.0,
        top_k: int = 5,
    ) -> None:
        self.holder = holder
        self.provider = provider
        self.memory = memory
        self.mailer = mailer
        self.tools = tools
        self.subject = subject
        self.min_score = min_score
        self.top_k = top_k
        self._sessions: Dict[str, ConversationSession] = {}
        self._lock = threading.Lock()

    def start_session(self) -> ConversationSession:
        session = ConversationSession(
            str(uuid.uuid4()),
            self.holder.current(),
            provider=self.provider,
            memory=self.memory,
            mailer=self.mailer,
            tools=self.tools,
            subject=self.subject,
            min_score=self.min_score,
            top_k=self.top_k,
        )
        with self._lock:
            self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> Optional[ConversationSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def end(self, session_id: str) -> bool:
        """Drop a session. Nothing to undo: an email only exists if it was already sent."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        return True

    def handle(self, session_id: str, text: str) -> TurnResult:
        session = self.get(session_id)
        if session is None:
            raise SessionClosed(f"Conversation not found: {session_id}")
        return session.handle(text)
