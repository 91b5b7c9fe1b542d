import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Load .env from current directory so PROVIDER and API keys are set automatically.
load_dotenv()


class Settings(BaseModel):
    """Runtime configuration loaded from environment variables."""

    pipe_preset: str
    provider_name: str
    memory_backend: str
    mailer_name: str
    openai_api_key: Optional[str]
    openrouter_api_key: Optional[str]
    openrouter_model: Optional[str]
    langbase_api_key: Optional[str]
    resend_api_key: Optional[str]
    contact_email: Optional[str]
    mail_from: str = "Advocado <advocado@stevanussatria.com>"
    auth_token: Optional[str] = None
    docs_root: str = "."
    db_path: str = "./data/advocado.db"
    cors_origins: str = "*"
    request_timeout: float = 30.0
    min_score: float = 0.0
    top_k: int = 5

    service_name: str = "advocado"
    http_port: int = 4280


@lru_cache(maxsize=1)
def _base_settings() -> Settings:
    """Defaults only; `get_settings` overlays the current environment."""

    return Settings(
        pipe_preset="advocado",
        provider_name="stub",
        memory_backend="stub",
        mailer_name="stub",
        openai_api_key=None,
        openrouter_api_key=None,
        openrouter_model=None,
        langbase_api_key=None,
        resend_api_key=None,
        contact_email=None,
    )


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_settings() -> Settings:
    """
    Return Settings built from the *current* environment.

    Callers read this once at startup and hand the result to constructors;
    tests mutate os.environ between cases, so nothing here is cached.
    """

    base = _base_settings()
    return Settings(
        pipe_preset=os.getenv("PIPE_PRESET") or base.pipe_preset,
        provider_name=(os.getenv("PROVIDER") or base.provider_name).lower(),
        memory_backend=(os.getenv("MEMORY_BACKEND") or base.memory_backend).lower(),
        mailer_name=(os.getenv("MAILER") or base.mailer_name).lower(),
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        openrouter_api_key=os.getenv("OPENROUTER_API_KEY") or None,
        openrouter_model=os.getenv("OPENROUTER_MODEL") or None,
        langbase_api_key=os.getenv("LANGBASE_API_KEY") or None,
        resend_api_key=os.getenv("RESEND_API_KEY") or None,
        contact_email=os.getenv("CONTACT_EMAIL") or None,
        mail_from=os.getenv("MAIL_FROM") or base.mail_from,
        auth_token=os.getenv("AUTH_TOKEN") or None,
        docs_root=os.getenv("DOCS_ROOT") or base.docs_root,
        db_path=os.getenv("DB_PATH") or base.db_path,
        cors_origins=os.getenv("CORS_ORIGINS") or base.cors_origins,
        request_timeout=_float_env("REQUEST_TIMEOUT", base.request_timeout),
        min_score=_float_env("MIN_SCORE", base.min_score),
        top_k=_int_env("TOP_K", base.top_k),
        service_name=base.service_name,
        http_port=_int_env("PORT", base.http_port),
    )
