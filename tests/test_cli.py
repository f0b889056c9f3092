from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from chibi_lab import cli

from conftest import StubBackend


@pytest.fixture()
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text("storage:\n  data_dir: data\nsync:\n  poll_interval: 0.05\n", encoding="utf-8")
    return path


@pytest.fixture()
def stub_backend(monkeypatch: pytest.MonkeyPatch) -> StubBackend:
    backend = StubBackend()
    monkeypatch.setattr(cli, "create_gemini_backend", lambda **kwargs: backend)
    return backend


def _run(config_file: Path, *argv: str) -> int:
    return cli.main(["--config", str(config_file), *argv])


def test_token_lifecycle(config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(config_file, "token", "status") == 1
    assert _run(config_file, "token", "set", "unknown") == 1

    assert _run(config_file, "token", "issue", "tok-1", "3") == 0
    assert _run(config_file, "token", "set", "tok-1") == 0
    assert _run(config_file, "token", "status") == 0
    assert "uses remaining=3" in capsys.readouterr().err

    assert _run(config_file, "token", "clear") == 0
    assert _run(config_file, "token", "status") == 1


def test_generate_and_list(
    config_file: Path, tmp_path: Path, stub_backend: StubBackend, capsys: pytest.CaptureFixture[str]
) -> None:
    _run(config_file, "token", "issue", "tok-2", "2")
    _run(config_file, "token", "set", "tok-2")

    output = tmp_path / "out" / "base.png"
    assert _run(config_file, "base", "from-text", "a small robot", "--output", str(output)) == 0
    assert output.read_bytes() == stub_backend.image

    assert _run(config_file, "generate", "waving hello") == 0
    capsys.readouterr()
    assert _run(config_file, "library", "list") == 0
    assert "waving hello" in capsys.readouterr().out

    # Both uses are spent now.
    assert _run(config_file, "generate", "one more") == 1
    assert len(stub_backend.requests) == 2


def test_shared_library_commands(config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(config_file, "library", "create") == 0
    assert "created shared library lib-" in capsys.readouterr().err
    assert _run(config_file, "library", "list", "--deleted") == 0
    assert _run(config_file, "library", "clear") == 1
    assert _run(config_file, "library", "clear", "--yes") == 0
    assert _run(config_file, "library", "rename", "missing-id", "x") == 1
    assert _run(config_file, "library", "leave") == 0


def test_base_commands_without_base(config_file: Path) -> None:
    assert _run(config_file, "base", "show") == 1
    assert _run(config_file, "base", "rename", "Nobody") == 1
    assert _run(config_file, "base", "reset") == 0


def test_unusable_ids_fail_cleanly(config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(config_file, "token", "issue", "bad.token", "3") == 1
    assert "cannot be blank or contain" in capsys.readouterr().err
    assert _run(config_file, "token", "set", "bad#token") == 1

    assert _run(config_file, "library", "use", "lib-ids") == 0
    assert _run(config_file, "library", "rename", "a.b", "x") == 1
    assert _run(config_file, "library", "favorite", "a/b") == 1
    assert _run(config_file, "library", "delete", "x[1]") == 0
    assert "No expression with id a.b." in capsys.readouterr().err
