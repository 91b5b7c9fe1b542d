"""
Admin API: POST /admin/publish, GET /admin/pipes/{name}, POST /admin/memory.

All require the AUTH_TOKEN bearer token when one is configured.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from advocado.config import get_settings
from advocado.dependencies import AuthError, enforce_auth, get_holder, get_memory, get_publisher, get_tools
from advocado.documents import DocumentStore
from advocado.errors import PipeLoadError, PublishError, SchemaError
from advocado.memory import BaseMemory
from advocado.pipe_loader import load_pipe_preset
from advocado.publisher import build_configuration
from advocado.responses import error_response
from advocado.storage import pipe_store

router = APIRouter(prefix="/admin", tags=["admin"])


async def _options(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    body = await request.json()
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body


@router.post("/publish")
async def post_publish(request: Request) -> JSONResponse:
    """
    Compile the configured pipe preset and publish it.
    Body (optional): { "force": bool }. Returns 200 with the PublishResult.
    """
    try:
        enforce_auth(request)
    except AuthError as exc:
        return error_response(401, "UNAUTHORIZED", str(exc))
    try:
        options = await _options(request)
    except ValueError as exc:
        return error_response(400, "MALFORMED_REQUEST", str(exc) or "Request body must be valid JSON")

    settings = get_settings()
    try:
        preset = load_pipe_preset(settings.pipe_preset)
        config = build_configuration(preset, get_tools())
        result = get_publisher(settings).publish(preset.id, config, force=bool(options.get("force")))
    except SchemaError as exc:
        return error_response(500, "SCHEMA_ERROR", str(exc), details=exc.details)
    except PipeLoadError as exc:
        return error_response(500, "SCHEMA_ERROR", str(exc), details=exc.details)
    except PublishError as exc:
        return error_response(502, "PUBLISH_ERROR", str(exc), details=exc.details, config=get_holder().current())
    return JSONResponse(status_code=200, content=result.model_dump())


@router.post("/memory")
async def post_memory(request: Request, memory: BaseMemory = Depends(get_memory)) -> JSONResponse:
    """Upload every manifest document into the bound memory. Returns per-document results."""
    try:
        enforce_auth(request)
    except AuthError as exc:
        return error_response(401, "UNAUTHORIZED", str(exc))

    settings = get_settings()
    config = get_holder().current()
    store = DocumentStore(memory, config.memory_name, db_path=settings.db_path)
    results = await store.upload_manifest(config.manifest, settings.docs_root)
    return JSONResponse(
        status_code=200,
        content={
            "memory": config.memory_name,
            "uploaded": sum(1 for r in results if r.ok),
            "failed": sum(1 for r in results if not r.ok),
            "results": [r.model_dump() for r in results],
        },
    )


@router.get("/pipes/{name}")
async def get_pipe_history(name: str, request: Request) -> JSONResponse:
    """Published versions of one pipe, oldest first. 404 when it was never published."""
    try:
        enforce_auth(request)
    except AuthError as exc:
        return error_response(401, "UNAUTHORIZED", str(exc))

    versions = pipe_store.history(get_settings().db_path, name)
    if not versions:
        return error_response(404, "NOT_FOUND", f"Pipe {name} has not been published")
    return JSONResponse(status_code=200, content={"name": name, "versions": versions})
