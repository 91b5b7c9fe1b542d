"""
Conversation API: POST /sessions, POST /sessions/{id}/messages, GET /sessions/{id}, DELETE /sessions/{id}.

Contract: 201 + session_id; 200 + reply/state/email_sent; 200 + session dict or 404.
Error responses use the error envelope (400/404/500).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from advocado.dependencies import get_session_manager
from advocado.orchestrator import SessionClosed, SessionManager
from advocado.responses import error_response

logger = logging.getLogger("advocado")

router = APIRouter(prefix="/sessions", tags=["sessions"])

MAX_MESSAGE_CHARS = 4000


@router.post("", status_code=201)
async def post_sessions(manager: SessionManager = Depends(get_session_manager)) -> JSONResponse:
    """Start a conversation against the currently published configuration."""
    session = manager.start_session()
    logger.info("session started session=%s pipe=%s", session.session_id, session.config.name)
    return JSONResponse(status_code=201, content={"session_id": session.session_id})


@router.post("/{session_id}/messages")
async def post_session_message(
    session_id: str,
    request: Request,
    manager: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """
    Run one user turn. Body: { "message": "..." }.
    Returns 200 with { reply, state, email_sent, error, retryable, citations }.
    """
    try:
        body = await request.json()
    except Exception:
        return error_response(400, "MALFORMED_REQUEST", "Request body must be valid JSON")
    message = body.get("message") if isinstance(body, dict) else None
    if not isinstance(message, str) or not message.strip():
        return error_response(
            400,
            "MALFORMED_REQUEST",
            "Request body must include a non-empty 'message' string",
            details=[{"message": "Missing 'message' field"}],
        )
    if len(message) > MAX_MESSAGE_CHARS:
        return error_response(400, "MALFORMED_REQUEST", f"'message' exceeds {MAX_MESSAGE_CHARS} characters")

    session = manager.get(session_id)
    if session is None:
        return error_response(404, "NOT_FOUND", f"Session not found: {session_id}")

    try:
        # Turns block on the session lock and on remote capabilities.
        result = await run_in_threadpool(session.handle, message.strip())
    except SessionClosed as exc:
        return error_response(404, "NOT_FOUND", str(exc), config=session.config)
    return JSONResponse(status_code=200, content=result.as_dict())


@router.get("/{session_id}")
async def get_session(session_id: str, manager: SessionManager = Depends(get_session_manager)) -> JSONResponse:
    session = manager.get(session_id)
    if session is None:
        return error_response(404, "NOT_FOUND", f"Session not found: {session_id}")
    return JSONResponse(status_code=200, content=session.snapshot())


@router.delete("/{session_id}")
async def delete_session(session_id: str, manager: SessionManager = Depends(get_session_manager)) -> JSONResponse:
    if not manager.end(session_id):
        return error_response(404, "NOT_FOUND", f"Session not found: {session_id}")
    logger.info("session ended session=%s", session_id)
    return JSONResponse(status_code=200, content={"ok": True, "session_id": session_id})
