import logging
import os
from unittest.mock import patch

from shardstore.config.settings import Settings, setup_logging


class TestSettings:
    def test_defaults_from_environment(self):
        with patch.dict(os.environ, {"STORAGE_DATABASE_URL": "sqlite:///data/app.db"}):
            Settings.refresh_from_env()

        assert Settings.STORAGE_DATABASE_URL == "sqlite:///data/app.db"
        assert Settings.STORAGE_CONNECT_TIMEOUT == 5.0
        assert Settings.STORAGE_SQL_SHARDS == []

    def test_shard_lists_parse_from_json(self):
        env = {
            "STORAGE_SQL_SHARDS": '[{"key": "eu", "connection_string": "sqlite:///eu.db", "conditions": ["de"]}]',
            "STORAGE_REDIS_SHARDS": '[{"key": "eu", "address": "10.0.0.1", "port": 6379}]',
            "STORAGE_REDIS_ADDRESS": "cache",
            "STORAGE_REDIS_PORT": "6380",
        }
        with patch.dict(os.environ, env):
            Settings.refresh_from_env()

        assert Settings.STORAGE_SQL_SHARDS[0].key == "eu"
        assert Settings.STORAGE_SQL_SHARDS[0].conditions == ["de"]
        assert Settings.STORAGE_REDIS_SHARDS[0].address == "10.0.0.1"

        config = Settings.redis_config()
        assert config.address == "cache"
        assert config.port == 6380
        Settings.refresh_from_env()

    def test_invalid_values_fall_back(self):
        env = {
            "STORAGE_CONNECT_TIMEOUT": "soon",
            "STORAGE_LOG_QUERIES": "yes",
        }
        with patch.dict(os.environ, env):
            Settings.refresh_from_env()

        assert Settings.STORAGE_CONNECT_TIMEOUT == 5.0
        assert Settings.STORAGE_LOG_QUERIES is True
        assert Settings.validate() is True
        Settings.refresh_from_env()

    def test_invalid_shard_json_fails_validation(self):
        for value in ("not json", '[{"key": "eu"', '{"key": "eu"}'):
            with patch.dict(os.environ, {"STORAGE_REDIS_SHARDS": value}):
                Settings.refresh_from_env()
            assert Settings.STORAGE_REDIS_SHARDS == []
            assert Settings.validate() is False
        Settings.refresh_from_env()
        assert Settings.validate() is True

    def test_malformed_shard_entry_fails_validation(self):
        env = {
            "STORAGE_SQL_SHARDS": (
                '[{"key": "eu", "connection_string": "sqlite:///eu.db"},'
                ' {"key": "us", "connection_string": 123}]'
            ),
        }
        with patch.dict(os.environ, env):
            Settings.refresh_from_env()

        assert [shard.key for shard in Settings.STORAGE_SQL_SHARDS] == ["eu"]
        assert Settings.validate() is False
        Settings.refresh_from_env()

    def test_validate_rejects_duplicate_shard_keys(self):
        env = {
            "STORAGE_SQL_SHARDS": '[{"key": "a", "connection_string": "x"}, {"key": "a", "connection_string": "y"}]',
        }
        with patch.dict(os.environ, env):
            Settings.refresh_from_env()
            assert Settings.validate() is False
        Settings.refresh_from_env()
        assert Settings.validate() is True

    def test_setup_logging(self):
        setup_logging("DEBUG")
        assert logging.getLogger("shardstore").level == logging.DEBUG

        setup_logging("off")
        assert logging.getLogger("shardstore").level > logging.CRITICAL

        setup_logging("ERROR")
