"""Storage settings resolved from the environment."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, List, Optional, Type, TypeVar

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from ..db.base import sanitize_connection_string
from ..db.connect import ShardConnectString
from ..kv.connect import ConnectionConfig, ShardConnectConfig

load_dotenv()

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _value_from_env(key: str, default: Any = None) -> Any:
    env_val = os.getenv(key)
    if env_val is not None:
        return env_val
    return default


def _as_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value
    return str(value)


def _as_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        return normalized in {"1", "true", "yes", "on"}
    return default


def _as_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (ValueError, TypeError):
        return default


def _as_float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except (ValueError, TypeError):
        return default


def _as_json_list(value: Any, key: str, errors: List[str]) -> List[Any]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return []
    try:
        parsed = json.loads(value) if isinstance(value, str) else value
    except json.JSONDecodeError as exc:
        logger.warning(f"Invalid JSON in {key}: {exc}")
        errors.append(f"{key} is not valid JSON: {exc}")
        return []
    if not isinstance(parsed, list):
        logger.warning(f"{key} must be a JSON list")
        errors.append(f"{key} must be a JSON list")
        return []
    return parsed


def _parse_shards(raw: List[Any], model: Type[M], key: str, errors: List[str]) -> List[M]:
    shards = []
    for index, item in enumerate(raw):
        try:
            shards.append(model.model_validate(item))
        except ValidationError as exc:
            logger.warning(f"Malformed {key} entry {index}: {exc}")
            errors.append(f"{key} entry {index} is malformed")
    return shards


class Settings:
    """Storage settings resolved from environment variables and ``.env``."""

    STORAGE_DATABASE_URL: str = "sqlite:///.storage/storage.db"
    STORAGE_DB_POOL_MIN_SIZE: Optional[int] = None
    STORAGE_DB_POOL_MAX_SIZE: Optional[int] = None
    STORAGE_CONNECT_TIMEOUT: float = 5.0
    STORAGE_LOG_QUERIES: bool = False

    STORAGE_REDIS_ADDRESS: str = ""
    STORAGE_REDIS_PORT: int = 6379
    STORAGE_REDIS_DB: int = 0
    STORAGE_REDIS_PASSWORD: str = ""

    STORAGE_SQL_SHARDS: List[ShardConnectString] = []
    STORAGE_REDIS_SHARDS: List[ShardConnectConfig] = []

    LOG_LEVEL: str = "INFO"

    # Parse failures from the last refresh, reported by validate()
    _config_errors: List[str] = []

    @classmethod
    def _populate(cls) -> None:
        cls.STORAGE_DATABASE_URL = _as_str(
            _value_from_env("STORAGE_DATABASE_URL", "sqlite:///.storage/storage.db")
        )
        min_size = _value_from_env("STORAGE_DB_POOL_MIN_SIZE")
        cls.STORAGE_DB_POOL_MIN_SIZE = _as_int(min_size) if min_size is not None else None
        max_size = _value_from_env("STORAGE_DB_POOL_MAX_SIZE")
        cls.STORAGE_DB_POOL_MAX_SIZE = _as_int(max_size) if max_size is not None else None
        cls.STORAGE_CONNECT_TIMEOUT = _as_float(
            _value_from_env("STORAGE_CONNECT_TIMEOUT", 5.0), 5.0
        )
        cls.STORAGE_LOG_QUERIES = _as_bool(_value_from_env("STORAGE_LOG_QUERIES", "false"), False)

        cls.STORAGE_REDIS_ADDRESS = _as_str(_value_from_env("STORAGE_REDIS_ADDRESS", ""))
        cls.STORAGE_REDIS_PORT = _as_int(_value_from_env("STORAGE_REDIS_PORT", 6379), 6379)
        cls.STORAGE_REDIS_DB = _as_int(_value_from_env("STORAGE_REDIS_DB", 0), 0)
        cls.STORAGE_REDIS_PASSWORD = _as_str(_value_from_env("STORAGE_REDIS_PASSWORD", ""))

        errors: List[str] = []
        for key, model in (
            ("STORAGE_SQL_SHARDS", ShardConnectString),
            ("STORAGE_REDIS_SHARDS", ShardConnectConfig),
        ):
            raw = _as_json_list(_value_from_env(key), key, errors)
            setattr(cls, key, _parse_shards(raw, model, key, errors))
        cls._config_errors = errors

        cls.LOG_LEVEL = _as_str(_value_from_env("LOG_LEVEL", "INFO"), "INFO")

    @classmethod
    def refresh_from_env(cls) -> None:
        cls._populate()

    @classmethod
    def redis_config(cls) -> ConnectionConfig:
        return ConnectionConfig(
            address=cls.STORAGE_REDIS_ADDRESS,
            port=cls.STORAGE_REDIS_PORT,
            db=cls.STORAGE_REDIS_DB,
            password=cls.STORAGE_REDIS_PASSWORD,
        )

    @classmethod
    def validate(cls) -> bool:
        errors = list(cls._config_errors)

        if not cls.STORAGE_DATABASE_URL and not cls.STORAGE_SQL_SHARDS:
            errors.append("STORAGE_DATABASE_URL or STORAGE_SQL_SHARDS is required")
        if cls.STORAGE_CONNECT_TIMEOUT < 0:
            errors.append("STORAGE_CONNECT_TIMEOUT must not be negative")
        if (
            cls.STORAGE_DB_POOL_MIN_SIZE is not None
            and cls.STORAGE_DB_POOL_MAX_SIZE is not None
            and cls.STORAGE_DB_POOL_MIN_SIZE > cls.STORAGE_DB_POOL_MAX_SIZE
        ):
            errors.append("STORAGE_DB_POOL_MIN_SIZE must not exceed STORAGE_DB_POOL_MAX_SIZE")
        if cls.STORAGE_REDIS_ADDRESS and cls.STORAGE_REDIS_PORT <= 0:
            errors.append("STORAGE_REDIS_PORT must be positive when STORAGE_REDIS_ADDRESS is set")

        seen = set()
        for shard in cls.STORAGE_SQL_SHARDS:
            if not shard.key:
                errors.append("STORAGE_SQL_SHARDS entry has an empty key")
            elif shard.key in seen:
                errors.append(f"STORAGE_SQL_SHARDS key '{shard.key}' is duplicated")
            seen.add(shard.key)

        seen = set()
        for redis_shard in cls.STORAGE_REDIS_SHARDS:
            if not redis_shard.key:
                errors.append("STORAGE_REDIS_SHARDS entry has an empty key")
            elif redis_shard.key in seen:
                errors.append(f"STORAGE_REDIS_SHARDS key '{redis_shard.key}' is duplicated")
            seen.add(redis_shard.key)

        if errors:
            logger.error("Configuration validation failed:")
            for error in errors:
                logger.error(f"  - {error}")
            return False

        return True

    @classmethod
    def log_config(cls) -> None:
        logger.info("Storage Configuration:")
        logger.info(f"  Database URL: {sanitize_connection_string(cls.STORAGE_DATABASE_URL)}")
        logger.info(
            f"  Pool Size: {cls.STORAGE_DB_POOL_MIN_SIZE or 'default'}"
            f"-{cls.STORAGE_DB_POOL_MAX_SIZE or 'default'}"
        )
        logger.info(f"  Connect Timeout: {cls.STORAGE_CONNECT_TIMEOUT}s")
        logger.info(f"  Query Logging: {'Enabled' if cls.STORAGE_LOG_QUERIES else 'Disabled'}")
        if cls.STORAGE_REDIS_ADDRESS:
            logger.info(
                f"  Redis: {cls.STORAGE_REDIS_ADDRESS}:{cls.STORAGE_REDIS_PORT}/{cls.STORAGE_REDIS_DB}"
            )
        else:
            logger.info("  Redis: not set")
        logger.info(
            "  Shards: SQL=%s Redis=%s",
            [s.key for s in cls.STORAGE_SQL_SHARDS],
            [s.key for s in cls.STORAGE_REDIS_SHARDS],
        )


# Populate class attributes on import
Settings.refresh_from_env()


def setup_logging(level_override: Optional[str] = None) -> None:
    """Configure root logging using the environment or an override."""

    level_name = (level_override or Settings.LOG_LEVEL or "WARNING").upper()

    if level_name in {"NO", "NONE", "OFF"}:
        # Use a level above CRITICAL to ensure all logging is effectively disabled
        level = logging.CRITICAL + 10
    else:
        level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,
    )

    logging.getLogger("shardstore").setLevel(level)

    noisy_logger_level = max(level, logging.INFO)
    for name in ("asyncio", "aiosqlite", "asyncpg", "redis"):
        logging.getLogger(name).setLevel(noisy_logger_level)
