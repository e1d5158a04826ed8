"""
Configuration management for SpaceSync Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST point DB_PATH at persistent storage
    - Invalid values fail at startup, not on the first request

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep retry defaults conservative; they bound request latency
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class StorageBackend(Enum):
    """Supported store backends."""

    SQLITE = "sqlite"
    MEMORY = "memory"


class GapPolicy(Enum):
    """What a push does with a mutation that skips ahead of its client."""

    REJECT = "reject"
    TRUNCATE = "truncate"


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Address to bind
        port: Port to listen on
        cors_origins: Allowed CORS origins ("*" allows any)
    """

    host: str = "0.0.0.0"
    port: int = 8081
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("HTTP_CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8081")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Store configuration.

    Attributes:
        backend: sqlite (file) or memory (single shared in-memory connection)
        db_path: SQLite database file
        wal_mode: SQLite WAL journal mode enabled
        busy_timeout_ms: How long a writer waits for the write lock
        max_connections: Upper bound on pooled connections
    """

    backend: StorageBackend = StorageBackend.SQLITE
    db_path: str = "/var/lib/spacesync/sync.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    max_connections: int = 10

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("STORAGE_BACKEND", "sqlite").lower()
        try:
            backend = StorageBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORAGE_BACKEND '{backend_str}'. Must be one of: sqlite, memory"
            )
        return cls(
            backend=backend,
            db_path=os.getenv("DB_PATH", "/var/lib/spacesync/sync.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            max_connections=int(os.getenv("DB_MAX_CONNECTIONS", "10")),
        )


@dataclass(frozen=True)
class TransactConfig:
    """Transaction retry configuration.

    Attributes:
        max_attempts: Attempts before giving up with TransactionExhaustedError
        base_delay_ms: Backoff before the second attempt
        max_delay_ms: Cap on a single backoff
    """

    max_attempts: int = 10
    base_delay_ms: int = 10
    max_delay_ms: int = 1000

    @classmethod
    def from_env(cls) -> TransactConfig:
        """Load configuration from environment variables."""
        return cls(
            max_attempts=int(os.getenv("TX_MAX_ATTEMPTS", "10")),
            base_delay_ms=int(os.getenv("TX_BASE_DELAY_MS", "10")),
            max_delay_ms=int(os.getenv("TX_MAX_DELAY_MS", "1000")),
        )


@dataclass(frozen=True)
class PushConfig:
    """Push processing configuration.

    Attributes:
        gap_policy: reject the batch on a gap, or truncate the offending client
    """

    gap_policy: GapPolicy = GapPolicy.REJECT

    @classmethod
    def from_env(cls) -> PushConfig:
        """Load configuration from environment variables."""
        policy_str = os.getenv("PUSH_GAP_POLICY", "reject").lower()
        try:
            policy = GapPolicy(policy_str)
        except ValueError:
            raise ValueError(
                f"Invalid PUSH_GAP_POLICY '{policy_str}'. Must be one of: reject, truncate"
            )
        return cls(gap_policy=policy)


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        http: HTTP server configuration
        storage: Store configuration
        transact: Retry configuration
        push: Push processing configuration
        observability: Logging configuration
    """

    http: HttpConfig = field(default_factory=HttpConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    transact: TransactConfig = field(default_factory=TransactConfig)
    push: PushConfig = field(default_factory=PushConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            http=HttpConfig.from_env(),
            storage=StorageConfig.from_env(),
            transact=TransactConfig.from_env(),
            push=PushConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.storage.backend == StorageBackend.SQLITE and not self.storage.db_path:
            raise ValueError("DB_PATH is required when STORAGE_BACKEND=sqlite")
        if self.storage.max_connections < 1:
            raise ValueError("DB_MAX_CONNECTIONS must be at least 1")
        if self.storage.busy_timeout_ms < 0:
            raise ValueError("SQLITE_BUSY_TIMEOUT_MS must not be negative")

        if self.transact.max_attempts < 1:
            raise ValueError("TX_MAX_ATTEMPTS must be at least 1")
        if self.transact.base_delay_ms < 0 or self.transact.max_delay_ms < 0:
            raise ValueError("TX_BASE_DELAY_MS and TX_MAX_DELAY_MS must not be negative")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if self.storage.backend == StorageBackend.SQLITE:
            db_dir = os.path.dirname(self.storage.db_path) or "."
            if not os.path.exists(db_dir):
                logger.warning(
                    f"Database directory does not exist: {db_dir}. "
                    "It will be created when the pool opens."
                )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "http_bind": f"{self.http.host}:{self.http.port}",
                "storage_backend": self.storage.backend.value,
                "db_path": self.storage.db_path
                if self.storage.backend == StorageBackend.SQLITE
                else None,
                "max_connections": self.storage.max_connections,
                "tx_max_attempts": self.transact.max_attempts,
                "gap_policy": self.push.gap_policy.value,
                "log_level": self.observability.log_level,
            },
        )
