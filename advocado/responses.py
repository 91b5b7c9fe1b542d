from __future__ import annotations

import uuid
from typing import Any, Dict, Optional, Tuple

from fastapi.responses import JSONResponse

from .models import AgentConfiguration


def new_request_id() -> str:
    return str(uuid.uuid4())


def build_error_envelope(
    *,
    request_id: str,
    config: Optional[AgentConfiguration],
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> Tuple[int, Dict[str, Any]]:
    meta = {
        "request_id": request_id,
        "pipe": config.name if config else "unknown",
        "version": config.policy_version if config else "unknown",
    }
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details,
        },
        "meta": meta,
    }
    return status_code, body


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
    *,
    config: Optional[AgentConfiguration] = None,
) -> JSONResponse:
    _, body = build_error_envelope(
        request_id=new_request_id(),
        config=config,
        status_code=status_code,
        code=code,
        message=message,
        details=details,
    )
    return JSONResponse(status_code=status_code, content=body)
