"""Tests for the gitrouter command line."""

import json
from pathlib import Path

import pytest

from gitrouter.main import main, parse_args
from gitrouter.store.sql_store import SQLStore


@pytest.fixture(autouse=True)
def _no_tokens(monkeypatch) -> None:
    for key in ("GITHUB_TOKEN", "SLACK_BOT_TOKEN", "GITHUB_WEBHOOK_SECRET", "DATABASE_URL"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'router.db'}"


@pytest.fixture
def config_path(tmp_path: Path, db_url: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(f"database:\n  url: {db_url}\nlogging:\n  level: WARNING\n")
    return path


def test_parse_args_defaults_to_serve() -> None:
    args = parse_args([])
    assert args.subcommand == "serve"
    assert args.config == Path("config.yaml")
    assert args.check is False


def test_parse_args_seed_requires_file() -> None:
    args = parse_args(["seed", "orgs.yaml", "-c", "custom.yaml"])
    assert args.subcommand == "seed"
    assert args.file == Path("orgs.yaml")
    assert args.config == Path("custom.yaml")
    with pytest.raises(SystemExit):
        parse_args(["seed"])


def test_check_only_validates_config(config_path: Path, db_url: str, capsys) -> None:
    assert main(["--check", "-c", str(config_path)]) == 0
    out = capsys.readouterr().out
    assert out.startswith("Config OK:")
    assert db_url in out


def test_seed_command(config_path: Path, db_url: str, tmp_path: Path, capsys) -> None:
    seed = tmp_path / "seed.yaml"
    seed.write_text(
        "organizations:\n"
        "  - name: Acme\n"
        "    reviewers:\n"
        "      - {github_username: alice, slack_user_id: U1}\n"
        "    repositories:\n"
        "      - {full_name: acme/api, default_reviewer: alice}\n"
    )

    assert main(["seed", str(seed), "-c", str(config_path)]) == 0
    assert "Seeded 1 organizations" in capsys.readouterr().out

    store = SQLStore(db_url)
    try:
        assert store.get_repository("acme/api") is not None
    finally:
        store.close()


def test_seed_command_reports_errors(config_path: Path, tmp_path: Path) -> None:
    seed = tmp_path / "seed.yaml"
    seed.write_text("organizations:\n  - name: Acme\n    default_reviewer: ghost\n")

    assert main(["seed", str(seed), "-c", str(config_path)]) == 1


def test_sweep_command_prints_stats(config_path: Path, capsys) -> None:
    assert main(["sweep", "-c", str(config_path)]) == 0
    stats = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert stats["processed"] == 0
    assert stats["skipped"] is False
