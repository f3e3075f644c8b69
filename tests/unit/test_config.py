"""
Unit tests for settings and command-line parsing
"""

import pytest

from core.config import Settings
from mirror.cli import parse_args


class TestSettings:
    
    def test_defaults(self, monkeypatch):
        for name in ("SYNC_BATCH_SIZE", "SYNC_FLUSH_INTERVAL_MS", "CHECKPOINT_BACKEND", "SINK_DATABASE_URL"):
            monkeypatch.delenv(name, raising=False)
        
        settings = Settings(_env_file=None)
        
        assert settings.SYNC_BATCH_SIZE == 1000
        assert settings.SYNC_FLUSH_INTERVAL_MS == 1000
        assert settings.CHECKPOINT_BACKEND == "file"
        assert settings.SHUTDOWN_DRAIN_PENDING is True
    
    def test_sink_url_defaults_to_source(self, monkeypatch):
        monkeypatch.delenv("SINK_DATABASE_URL", raising=False)
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./mirror.db")
        
        settings = Settings(_env_file=None)
        
        assert settings.sink_database_url == "sqlite+aiosqlite:///./mirror.db"
    
    def test_separate_sink_url(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./source.db")
        monkeypatch.setenv("SINK_DATABASE_URL", "sqlite+aiosqlite:///./sink.db")
        
        settings = Settings(_env_file=None)
        
        assert settings.sink_database_url == "sqlite+aiosqlite:///./sink.db"
    
    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SYNC_BATCH_SIZE", "250")
        monkeypatch.setenv("SHUTDOWN_DRAIN_PENDING", "false")
        
        settings = Settings(_env_file=None)
        
        assert settings.SYNC_BATCH_SIZE == 250
        assert settings.SHUTDOWN_DRAIN_PENDING is False


class TestParseArgs:
    
    def test_continuous_by_default(self):
        args = parse_args([])
        
        assert not args.catch_up
        assert not args.reset
        assert not args.init_db
    
    @pytest.mark.parametrize("flag", ["--catch-up", "--full-reindex"])
    def test_catch_up_flags(self, flag):
        assert parse_args([flag]).catch_up
    
    def test_reset_with_catch_up(self):
        args = parse_args(["--catch-up", "--reset"])
        
        assert args.catch_up and args.reset
    
    def test_reset_alone_rejected(self):
        with pytest.raises(SystemExit):
            parse_args(["--reset"])
