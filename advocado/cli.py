"""CLI entry point for the advocado package."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import List, Optional

MIN_PYTHON = (3, 10)


def _print_banner(pipe: str, provider: str, memory: str, mailer: str, port: int) -> None:
    provider_note = "no API key required" if provider == "stub" else "API key from .env"
    base = f"http://localhost:{port}"
    print()
    print("Advocado started, pipe: {}".format(pipe))
    print("Provider: {} ({})  |  Memory: {}  |  Mailer: {}".format(provider, provider_note, memory, mailer))
    print()
    print("Docs:     {}/docs".format(base))
    print("Config:   {}/config".format(base))
    print("Sessions: POST {}/sessions".format(base))
    print()


def _python_version_str() -> str:
    return ".".join(str(part) for part in sys.version_info[:3])


def _ensure_supported_python() -> None:
    if sys.version_info < MIN_PYTHON:
        print(
            "Error: Python {} detected. advocado requires Python {}.{}+.".format(
                _python_version_str(),
                MIN_PYTHON[0],
                MIN_PYTHON[1],
            ),
            file=sys.stderr,
        )
        sys.exit(2)


def _print_help() -> None:
    print("Advocado CLI")
    print()
    print("Usage:")
    print("  advocado                 Start the conversation server")
    print("  advocado serve           Start the conversation server")
    print("  advocado memory          Upload the document manifest into the memory")
    print("  advocado pipe [--force]  Publish the pipe configuration")
    print("  advocado help            Show this message")
    print()


def _configure_logging() -> None:
    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def run_memory() -> int:
    """Upload every manifest document; exit status 1 if any document failed."""
    from .config import get_settings
    from .documents import DocumentStore
    from .memory import build_memory
    from .pipe_loader import load_pipe_preset

    settings = get_settings()
    preset = load_pipe_preset(settings.pipe_preset)
    store = DocumentStore(build_memory(settings), preset.memory_name, db_path=settings.db_path)
    results = asyncio.run(store.upload_manifest(preset.documents, settings.docs_root))

    for result in results:
        if result.ok:
            print("  ok      {}  ({} bytes, sha256 {})".format(result.name, result.size, (result.content_hash or "")[:12]))
        else:
            print("  FAILED  {}  {}".format(result.name, result.error))
    failed = sum(1 for r in results if not r.ok)
    print()
    print("Memory {}: {} uploaded, {} failed".format(preset.memory_name, len(results) - failed, failed))
    return 1 if failed else 0


def run_pipe(force: bool = False) -> int:
    """Publish the configured pipe preset; exit status 1 on schema or publish errors."""
    from .config import get_settings
    from .errors import PipeLoadError, PublishError, SchemaError
    from .pipe_loader import load_pipe_preset
    from .publisher import PipePublisher, build_configuration, build_pipe_host
    from .tools import build_default_registry

    settings = get_settings()
    try:
        preset = load_pipe_preset(settings.pipe_preset)
        config = build_configuration(preset, build_default_registry())
        result = PipePublisher(build_pipe_host(settings), settings.db_path).publish(preset.id, config, force=force)
    except (PipeLoadError, SchemaError, PublishError) as exc:
        print("Error: {}".format(exc), file=sys.stderr)
        if exc.details:
            print("Details: {}".format(exc.details), file=sys.stderr)
        return 1

    state = "published" if result.changed else "unchanged"
    print("Pipe {} {} (version {}, hash {})".format(result.name, state, result.version, result.content_hash[:12]))
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """Run the server or handle memory/pipe/help commands."""
    from .config import get_settings

    _ensure_supported_python()
    args = list(sys.argv[1:] if argv is None else argv)
    settings = get_settings()

    subcommand = args[0].strip().lower() if args else "serve"
    if subcommand in {"-h", "--help", "help"}:
        _print_help()
        sys.exit(0)
    if subcommand == "memory":
        _configure_logging()
        sys.exit(run_memory())
    if subcommand == "pipe":
        _configure_logging()
        sys.exit(run_pipe(force="--force" in args[1:]))
    if subcommand != "serve":
        print("Unknown command: {}".format(subcommand), file=sys.stderr)
        _print_help()
        sys.exit(2)

    import uvicorn

    _configure_logging()
    host = os.environ.get("HOST", "0.0.0.0")
    _print_banner(
        pipe=settings.pipe_preset,
        provider=settings.provider_name,
        memory=settings.memory_backend,
        mailer=settings.mailer_name,
        port=settings.http_port,
    )
    uvicorn.run(
        "advocado.main:app",
        host=host,
        port=settings.http_port,
        factory=False,
    )


if __name__ == "__main__":
    main()
