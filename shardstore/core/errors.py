"""Error taxonomy for the storage layer."""

from __future__ import annotations

from typing import Optional


class StorageError(Exception):
    """Base class for every error raised by shardstore itself."""

    pass


# Configuration errors: raised while building clients, never at request time.


class ConfigurationError(StorageError):
    """Invalid shard or connection configuration."""

    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        if key:
            message = f"{message} (key={key})"
        super().__init__(message)


class ShardSetEmptyError(ConfigurationError):
    def __init__(self) -> None:
        super().__init__("Shard set requires at least one connection")


class ConnectionKeyEmptyError(ConfigurationError):
    def __init__(self) -> None:
        super().__init__("Connection key is empty")


class ConnectionKeyDuplicateError(ConfigurationError):
    def __init__(self, key: str):
        super().__init__("Connection keys cannot duplicate", key=key)


class ConnectionStringEmptyError(ConfigurationError):
    def __init__(self, key: Optional[str] = None):
        super().__init__("Connection string is empty", key=key)


class ClientAddressEmptyError(ConfigurationError):
    def __init__(self, key: Optional[str] = None):
        super().__init__("Client address is empty", key=key)


class ClientPortZeroError(ConfigurationError):
    def __init__(self, key: Optional[str] = None):
        super().__init__("Client port is zero", key=key)


class UnsupportedDatabaseURLError(ConfigurationError):
    def __init__(self, url: str):
        self.url = url
        super().__init__(
            f"Unsupported database URL: {url}. Supported: sqlite:///path, postgresql://..."
        )


# Selection


class ConnectionNotSelected(StorageError):
    """The shard selector did not choose a connection for this context."""

    def __init__(self, message: str = "connection not selected"):
        super().__init__(message)


# Not found


class NotFoundError(StorageError):
    """A lookup finished successfully but found nothing."""

    pass


class KeyNotFoundError(NotFoundError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"redis key not found: {key}")


class RecordNotFoundError(NotFoundError):
    def __init__(self, message: str = "record not found"):
        super().__init__(message)


def is_not_found(err: Optional[BaseException]) -> bool:
    """Return True when ``err`` signals a missing key or record."""
    return isinstance(err, NotFoundError)


# Key validation


class KeyEmptyError(StorageError):
    def __init__(self) -> None:
        super().__init__("key is empty")


class InvalidKeyError(StorageError):
    def __init__(self, key_type: str):
        self.key_type = key_type
        super().__init__(f"invalid key: {key_type} key is empty")


# Connecting


class OpenConnectError(StorageError):
    """The driver refused to open a connection pool."""

    def __init__(self, driver: str, connection_string: str, cause: BaseException):
        self.driver = driver
        self.connection_string = connection_string
        super().__init__(f"failed to open {driver} connection to {connection_string}: {cause}")


class PingError(StorageError):
    """A freshly opened connection did not answer a ping."""

    def __init__(self, target: str, cause: BaseException):
        self.target = target
        super().__init__(f"ping failed for {target}: {cause}")


# Context


class ContextCancelledError(StorageError):
    pass


class DeadlineExceededError(StorageError):
    pass


# Usage


class NotShardClientError(StorageError):
    def __init__(self) -> None:
        super().__init__("method not supported in single client")


class BackendClosedError(StorageError):
    def __init__(self, backend_type: str):
        super().__init__(f"{backend_type} backend is closed")
