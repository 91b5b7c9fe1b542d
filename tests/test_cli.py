from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from advocado import cli
from advocado.storage import ledger_store, pipe_store


def _settings(tmp_path: Path, **overrides) -> SimpleNamespace:
    values = dict(
        pipe_preset="advocado",
        provider_name="stub",
        memory_backend="stub",
        mailer_name="stub",
        langbase_api_key=None,
        request_timeout=30.0,
        docs_root=str(tmp_path),
        db_path=str(tmp_path / "advocado.db"),
        http_port=4280,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_print_help_lists_subcommands(capsys: pytest.CaptureFixture[str]) -> None:
    cli._print_help()
    output = capsys.readouterr().out
    assert "advocado memory" in output
    assert "advocado pipe [--force]" in output


def test_help_subcommand_exits_zero(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr("advocado.config.get_settings", lambda: _settings(tmp_path))
    with pytest.raises(SystemExit) as exc:
        cli.main(["help"])
    assert exc.value.code == 0


def test_unknown_subcommand_exits_two(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr("advocado.config.get_settings", lambda: _settings(tmp_path))
    with pytest.raises(SystemExit) as exc:
        cli.main(["deploy"])
    assert exc.value.code == 2


def test_pipe_subcommand_publishes_then_reports_unchanged(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    settings = _settings(tmp_path)
    monkeypatch.setattr("advocado.config.get_settings", lambda: settings)

    assert cli.run_pipe() == 0
    assert cli.run_pipe() == 0
    output = capsys.readouterr().out

    assert "Pipe advocado published (version 1" in output
    assert "Pipe advocado unchanged (version 1" in output
    assert len(pipe_store.history(settings.db_path, "advocado")) == 1


def test_memory_subcommand_reports_failures(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    docs = tmp_path / "frontend" / "docs"
    docs.mkdir(parents=True)
    (docs / "index.md").write_text("Hello", encoding="utf-8")
    settings = _settings(tmp_path)
    monkeypatch.setattr("advocado.config.get_settings", lambda: settings)

    status = cli.run_memory()
    output = capsys.readouterr().out

    assert status == 1
    assert "ok      index.md" in output
    assert "FAILED  resume.md" in output
    assert "1 uploaded, 7 failed" in output
    assert [row["document_name"] for row in ledger_store.list_uploads(settings.db_path, "advocado-memory")] == [
        "index.md"
    ]


def test_serve_runs_uvicorn(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    calls = {}

    def fake_run(app: str, **kwargs) -> None:
        calls["app"] = app
        calls.update(kwargs)

    monkeypatch.setattr("advocado.config.get_settings", lambda: _settings(tmp_path, http_port=5050))
    monkeypatch.setattr("uvicorn.run", fake_run)
    monkeypatch.setattr(cli, "_configure_logging", lambda: None)

    cli.main([])

    assert calls["app"] == "advocado.main:app"
    assert calls["port"] == 5050
