from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import Settings
from .errors import ToolInvocationError

logger = logging.getLogger("advocado")

RESEND_API_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class OutgoingEmail:
    subject: str
    content: str
    sender_name: str
    sender_email: str


class BaseMailer:
    """Tool execution boundary for the send_email action."""

    def send_email(self, subject: str, content: str, sender_name: str, sender_email: str) -> Dict[str, Any]:  # pragma: no cover - interface only
        raise NotImplementedError


class StubMailer(BaseMailer):
    """Keeps sent messages in an in-memory outbox."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.outbox: List[OutgoingEmail] = []

    def send_email(self, subject: str, content: str, sender_name: str, sender_email: str) -> Dict[str, Any]:
        email = OutgoingEmail(subject=subject, content=content, sender_name=sender_name, sender_email=sender_email)
        with self._lock:
            self.outbox.append(email)
            message_id = f"stub-{len(self.outbox)}"
        logger.info("stub mailer accepted message_id=%s", message_id)
        return {"id": message_id}


class ResendMailer(BaseMailer):
    """Delivers contact messages to the site owner through the Resend API."""

    def __init__(self, api_key: str, to_address: str, from_address: str, *, timeout: float = 30.0) -> None:
        self.api_key = api_key
        self.to_address = to_address
        self.from_address = from_address
        self.timeout = timeout

    def send_email(self, subject: str, content: str, sender_name: str, sender_email: str) -> Dict[str, Any]:  # pragma: no cover - network
        import httpx

        body = {
            "from": self.from_address,
            "to": [self.to_address],
            "reply_to": f"{sender_name} <{sender_email}>",
            "subject": subject,
            "text": f"From: {sender_name} <{sender_email}>\n\n{content}",
        }
        try:
            resp = httpx.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                json=body,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            raise ToolInvocationError(
                "Email provider rejected the message",
                details={"status": exc.response.status_code},
            ) from exc
        except httpx.HTTPError as exc:
            raise ToolInvocationError(f"Email send failed: {exc}") from exc
        except ValueError as exc:
            raise ToolInvocationError("Email provider returned a non-JSON body") from exc


def build_mailer(settings: Settings) -> BaseMailer:
    """Factory that chooses the concrete mailer implementation."""
    if settings.mailer_name == "resend":
        missing: Optional[str] = None
        if not settings.resend_api_key:
            missing = "RESEND_API_KEY"
        elif not settings.contact_email:
            missing = "CONTACT_EMAIL"
        if missing:
            logger.warning("MAILER=resend but %s is unset; using stub mailer", missing)
            return StubMailer()
        return ResendMailer(
            api_key=settings.resend_api_key or "",
            to_address=settings.contact_email or "",
            from_address=settings.mail_from,
            timeout=settings.request_timeout,
        )
    return StubMailer()
