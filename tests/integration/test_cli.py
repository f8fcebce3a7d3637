"""Integration tests for the command-line entry point."""

import logging

import pytest

from covenant.cli import build_parser, main
from covenant.services.config import reset_settings

pytestmark = pytest.mark.integration


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("LOG_FILE", str(tmp_path / "logs" / "covenant.log"))
    reset_settings()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers.copy()
    original_level = root_logger.level
    yield tmp_path
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)
    reset_settings()


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_parser_run_sweeper_interval():
    args = build_parser().parse_args(["run-sweeper", "--interval", "30"])
    assert args.command == "run-sweeper"
    assert args.interval == 30.0


async def test_init_db_then_sweep(cli_env):
    assert await main(["init-db"]) == 0
    assert (cli_env / "cli.db").exists()
    assert await main(["sweep"]) == 0
    assert (cli_env / "logs" / "covenant.log").exists()


async def test_recalc_unknown_property_fails(cli_env):
    assert await main(["init-db"]) == 0
    assert await main(["recalc", "42"]) == 1
