"""
Tests for configuration checks and database URL handling.
"""

import pytest

from rallia.config import Config
from rallia.database.database import Database


class TestConfigValidation:

    def test_defaults_are_valid(self):
        Config.validate()

    @pytest.mark.parametrize("setting", [
        'CERTIFICATION_REQUIRED_REFERENCES',
        'CERTIFICATION_REQUIRED_PROOFS',
        'REFERENCE_REQUEST_EXPIRY_DAYS',
        'PEER_EVALUATION_WINDOW',
        'DB_RETRY_ATTEMPTS',
    ])
    def test_non_positive_settings_rejected(self, monkeypatch, setting):
        monkeypatch.setattr(Config, setting, 0)

        with pytest.raises(ValueError):
            Config.validate()

    def test_missing_database_url(self, monkeypatch):
        monkeypatch.setattr(Config, 'DATABASE_URL', '')

        with pytest.raises(ValueError, match="DATABASE_URL"):
            Config.validate()

    @pytest.mark.asyncio
    async def test_initialize_refuses_bad_config(self, monkeypatch):
        monkeypatch.setattr(Config, 'CERTIFICATION_REQUIRED_PROOFS', -1)
        database = Database('sqlite+aiosqlite://')

        with pytest.raises(ValueError, match="CERTIFICATION_REQUIRED_PROOFS"):
            await database.initialize()

        assert database.engine is None
        await database.close()


class TestAsyncDatabaseUrl:

    @pytest.mark.parametrize("configured, expected", [
        ('sqlite:///rallia.db', 'sqlite+aiosqlite:///rallia.db'),
        ('sqlite://', 'sqlite+aiosqlite://'),
        ('postgresql://user@localhost/rallia', 'postgresql+asyncpg://user@localhost/rallia'),
    ])
    def test_driver_rewrite(self, monkeypatch, configured, expected):
        monkeypatch.setattr(Config, 'DATABASE_URL', configured)

        assert Config.get_async_database_url() == expected
