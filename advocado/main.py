from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .dependencies import get_holder
from .errors import PipeLoadError, SchemaError
from .routers import admin as admin_router
from .routers import sessions as sessions_router
from .storage import ledger_store, pipe_store
from .responses import error_response


logger = logging.getLogger("advocado")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the ledger and pipe tables; compile the active configuration."""
    settings = get_settings()
    ledger_store.init_ledger_db(settings.db_path)
    pipe_store.init_pipe_db(settings.db_path)
    config = get_holder().current()
    logger.info(
        "startup pipe=%s model=%s policy_version=%s provider=%s memory=%s mailer=%s",
        config.name,
        config.model,
        config.policy_version,
        settings.provider_name,
        settings.memory_backend,
        settings.mailer_name,
    )
    yield


app = FastAPI(title="Advocado", version="0.1.0", lifespan=lifespan)


# CORS: controlled by env CORS_ORIGINS (e.g. * or https://stevanussatria.com)
_cors_origins_list = [o.strip() for o in get_settings().cors_origins.strip().split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(sessions_router.router)
app.include_router(admin_router.router)


@app.get("/")
async def root() -> Any:
    """Service metadata endpoint."""
    try:
        config = get_holder().current()
    except (PipeLoadError, SchemaError) as exc:
        return error_response(500, "INTERNAL_ERROR", str(exc), details=exc.details)

    return {
        "service": get_settings().service_name,
        "pipe": config.name,
        "version": config.policy_version,
        "docs": "/docs",
        "config": "/config",
        "health": "/health",
    }


@app.get("/health")
async def health() -> JSONResponse:
    """Returns 200 when the pipe configuration compiles."""
    try:
        config = get_holder().current()
    except (PipeLoadError, SchemaError) as exc:
        return error_response(500, "INTERNAL_ERROR", str(exc), details=exc.details)

    return JSONResponse(status_code=200, content={"status": "ok", "pipe": config.name, "version": config.policy_version})


@app.get("/config")
async def active_config() -> JSONResponse:
    """The configuration new conversations start from."""
    try:
        config = get_holder().current()
    except (PipeLoadError, SchemaError) as exc:
        return error_response(500, "INTERNAL_ERROR", str(exc), details=exc.details)

    payload: Dict[str, Any] = config.model_dump()
    payload["tools"] = [spec.name for spec in config.tools]
    return JSONResponse(status_code=200, content=payload)
