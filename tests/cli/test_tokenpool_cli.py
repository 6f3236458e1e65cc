from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
from typer.testing import CliRunner

from tokenpool.cli import app
from tokenpool.config import get_config


@pytest.fixture()
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    db_path = tmp_path / "cli.sqlite"
    monkeypatch.setenv("TOKENPOOL_DATABASE__DSN", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("TOKENPOOL_LOG_LEVEL", "WARNING")
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    get_config.cache_clear()
    yield tmp_path
    get_config.cache_clear()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def _invoke(*args: str, expect: int = 0) -> dict:
    result = CliRunner().invoke(app, list(args))
    assert result.exit_code == expect, result.output
    lines = [line for line in result.output.splitlines() if line.startswith("{")]
    return json.loads(lines[-1])


def test_full_admin_cycle(cli_env: Path) -> None:
    assert _invoke("init-db") == {"ok": True}

    created = _invoke("create-claimant", "cli-claimant-key", "--days", "3")
    assert created["id"]

    upload = cli_env / "tokens.txt"
    upload.write_text("\n".join(f"cli-token-{index:04d}" for index in range(12)) + "\nshort\n", encoding="utf-8")
    assert _invoke("ingest", str(upload)) == {"inserted": 12, "duplicates": 0, "total": 12}

    stats = _invoke("stats")
    assert stats["tokensRemaining"] == 12
    assert stats["claimsRemaining"] == 24
    assert stats["usersActive"] == 1

    deleted = _invoke("delete", "cli-token-0000", "--count", "10")
    assert deleted["deletedTokens"] == 10
    assert _invoke("stats")["tokensRemaining"] == 2

    assert _invoke("toggle", created["id"]) == {"id": created["id"], "isActive": False}
    assert _invoke("stats")["usersActive"] == 0


def test_errors_exit_with_code_two(cli_env: Path) -> None:
    _invoke("init-db")
    _invoke("create-claimant", "dup-claimant-key")

    duplicate = _invoke("create-claimant", "dup-claimant-key", expect=2)
    assert duplicate["error"] == "INVALID_INPUT"

    bad_window = _invoke("delete", "whatever", "--count", "3", expect=2)
    assert bad_window["details"] == {"min": 10, "max": 20}

    missing = _invoke("toggle", "no-such-claimant", expect=2)
    assert missing["error"] == "NOT_FOUND"
