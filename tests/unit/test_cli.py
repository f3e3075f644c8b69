"""
Unit tests for the command-line entry point
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from core.config import Settings
from mirror import cli
from mirror import runner as runner_module
from mirror.runner import EXIT_FATAL, SyncRunner
from mirror.shutdown import ShutdownCoordinator


@pytest.fixture
def sqlite_settings(tmp_path, monkeypatch):
    settings = Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'mirror.db'}",
        SINK_DATABASE_URL=None,
        CHECKPOINT_BACKEND="file",
        CHECKPOINT_PATH=str(tmp_path / "resume_token.txt"),
    )
    monkeypatch.setattr(cli, "settings", settings)
    monkeypatch.setattr(cli, "install_signal_handlers", lambda runner: None)
    return settings


class TestRun:
    
    @pytest.mark.asyncio
    async def test_unknown_checkpoint_backend_is_fatal(self, sqlite_settings, monkeypatch, caplog):
        sqlite_settings.CHECKPOINT_BACKEND = "redis"
        engine = MagicMock()
        monkeypatch.setattr(runner_module, "create_engine_for", lambda url: engine)
        
        with caplog.at_level(logging.ERROR, logger="mirror.cli"):
            exit_code = await cli.run(cli.parse_args([]))
        
        assert exit_code == EXIT_FATAL
        assert "Startup failed" in caplog.text
        engine.sync_engine.dispose.assert_called_once()
    
    @pytest.mark.asyncio
    async def test_table_creation_failure_releases_stores(self, sqlite_settings, monkeypatch, caplog):
        monkeypatch.setattr(
            SyncRunner,
            "init_db",
            AsyncMock(side_effect=OperationalError("CREATE TABLE", {}, Exception("disk I/O error")))
        )
        release = AsyncMock()
        monkeypatch.setattr(ShutdownCoordinator, "release", release)
        run_continuous = AsyncMock()
        monkeypatch.setattr(SyncRunner, "run_continuous", run_continuous)
        
        with caplog.at_level(logging.ERROR, logger="mirror.cli"):
            exit_code = await cli.run(cli.parse_args(["--init-db"]))
        
        assert exit_code == EXIT_FATAL
        assert "Table creation failed" in caplog.text
        release.assert_awaited_once()
        run_continuous.assert_not_awaited()
