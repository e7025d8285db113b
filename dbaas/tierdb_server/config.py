"""
Configuration management for TierDB Server.

Settings for both tiers, the archival engine and the HTTP API are read
from environment variables into frozen dataclasses, one per concern.
ServerConfig aggregates them and validates cross-field constraints.

Invariants:
    - Every setting has a default that runs locally with ARCHIVE_BACKEND=memory
    - The S3 backend requires S3_BUCKET
    - Credentials never appear in log_config() output

How to change safely:
    - New settings need a default that keeps existing deployments working
    - Keep retention and batch defaults in sync with ArchivalEngine
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class ArchiveBackend(Enum):
    """Supported archive store backends."""

    S3 = "s3"
    MEMORY = "memory"


@dataclass(frozen=True)
class HttpConfig:
    """HTTP API configuration.

    Attributes:
        host: Address to bind the HTTP server
        port: Port to bind the HTTP server
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
class S3Config:
    """S3 configuration for the archive tier.

    Attributes:
        bucket: S3 bucket name
        region: AWS region
        endpoint_url: Custom endpoint URL (for MinIO)
        archive_prefix: Prefix for archived record objects
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
        timeout_seconds: Per-call timeout for S3 requests
    """

    bucket: str = "tierdb-archive"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    archive_prefix: str = "records"
    access_key_id: str | None = None
    secret_access_key: str | None = None
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("S3_BUCKET", "tierdb-archive"),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            archive_prefix=os.getenv("S3_ARCHIVE_PREFIX", "records"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            timeout_seconds=float(os.getenv("S3_TIMEOUT_SECONDS", "30")),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Primary store (SQLite) configuration.

    Attributes:
        data_dir: Directory for the SQLite database
        db_file: Database file name inside data_dir
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    data_dir: str = "/var/lib/tierdb"
    db_file: str = "primary.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/tierdb"),
            db_file=os.getenv("PRIMARY_DB_FILE", "primary.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
        )

    @property
    def db_path(self) -> str:
        return os.path.join(self.data_dir, self.db_file)


@dataclass(frozen=True)
class ArchivalConfig:
    """Archival engine configuration.

    Attributes:
        enabled: Whether the in-process archival scheduler runs
        retention_days: Age after which records become eligible
        batch_size: Maximum records processed per invocation
        page_size: Records fetched per primary store scan page
        interval_seconds: Interval between scheduled passes
        time_budget_seconds: Execution-time budget of a single pass
        max_retries: Retries per store call on transient errors
        retry_delay_ms: Delay before the first retry
        max_consecutive_failures: Consecutive record failures that abort a batch
        lease_ttl_seconds: Lifetime of the cross-process runner lease
    """

    enabled: bool = True
    retention_days: int = 90
    batch_size: int = 1000
    page_size: int = 200
    interval_seconds: int = 86400  # daily
    time_budget_seconds: float = 840.0
    max_retries: int = 3
    retry_delay_ms: int = 200
    max_consecutive_failures: int = 25
    lease_ttl_seconds: int = 3600

    @classmethod
    def from_env(cls) -> ArchivalConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=os.getenv("ARCHIVAL_ENABLED", "true").lower() == "true",
            retention_days=int(os.getenv("ARCHIVAL_RETENTION_DAYS", "90")),
            batch_size=int(os.getenv("ARCHIVAL_BATCH_SIZE", "1000")),
            page_size=int(os.getenv("ARCHIVAL_PAGE_SIZE", "200")),
            interval_seconds=int(os.getenv("ARCHIVAL_INTERVAL_SECONDS", "86400")),
            time_budget_seconds=float(os.getenv("ARCHIVAL_TIME_BUDGET_SECONDS", "840")),
            max_retries=int(os.getenv("ARCHIVAL_MAX_RETRIES", "3")),
            retry_delay_ms=int(os.getenv("ARCHIVAL_RETRY_DELAY_MS", "200")),
            max_consecutive_failures=int(
                os.getenv("ARCHIVAL_MAX_CONSECUTIVE_FAILURES", "25")
            ),
            lease_ttl_seconds=int(os.getenv("ARCHIVAL_LEASE_TTL_SECONDS", "3600")),
        )


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

    This aggregates all configuration sections and provides validation.

    Attributes:
        archive_backend: Which archive backend to use
        http: HTTP API configuration
        s3: S3 configuration (if archive_backend is S3)
        storage: Primary store configuration
        archival: Archival engine configuration
        observability: Logging configuration
    """

    archive_backend: ArchiveBackend = ArchiveBackend.S3
    http: HttpConfig = field(default_factory=HttpConfig)
    s3: S3Config = field(default_factory=S3Config)
    storage: StorageConfig = field(default_factory=StorageConfig)
    archival: ArchivalConfig = field(default_factory=ArchivalConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("ARCHIVE_BACKEND", "s3").lower()
        try:
            archive_backend = ArchiveBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid ARCHIVE_BACKEND '{backend_str}'. Must be one of: s3, memory"
            )

        config = cls(
            archive_backend=archive_backend,
            http=HttpConfig.from_env(),
            s3=S3Config.from_env(),
            storage=StorageConfig.from_env(),
            archival=ArchivalConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.archive_backend == ArchiveBackend.S3 and not self.s3.bucket:
            raise ValueError("S3_BUCKET is required when ARCHIVE_BACKEND=s3")

        if self.archival.retention_days < 1:
            raise ValueError("ARCHIVAL_RETENTION_DAYS must be at least 1")
        if self.archival.batch_size < 1:
            raise ValueError("ARCHIVAL_BATCH_SIZE must be at least 1")
        if self.archival.page_size < 1:
            raise ValueError("ARCHIVAL_PAGE_SIZE must be at least 1")
        if self.archival.max_retries < 0:
            raise ValueError("ARCHIVAL_MAX_RETRIES must not be negative")

        if self.archive_backend == ArchiveBackend.MEMORY:
            logger.warning(
                "ARCHIVE_BACKEND=memory keeps archived records in process memory; "
                "they are lost on restart"
            )

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "archive_backend": self.archive_backend.value,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "s3_bucket": self.s3.bucket
                if self.archive_backend == ArchiveBackend.S3
                else None,
                "s3_endpoint": self.s3.endpoint_url,
                "archive_prefix": self.s3.archive_prefix,
                "db_path": self.storage.db_path,
                "archival_enabled": self.archival.enabled,
                "retention_days": self.archival.retention_days,
                "batch_size": self.archival.batch_size,
                "log_level": self.observability.log_level,
            },
        )
