"""
Unit tests for environment-driven configuration.
"""

import pytest

from dbaas.tierdb_server.config import (
    ArchivalConfig,
    ArchiveBackend,
    HttpConfig,
    ServerConfig,
    StorageConfig,
)


class TestServerConfig:
    """Tests for ServerConfig.from_env and validate."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch, tmp_path):
        for name in (
            "ARCHIVE_BACKEND",
            "ARCHIVAL_RETENTION_DAYS",
            "ARCHIVAL_BATCH_SIZE",
            "ARCHIVAL_ENABLED",
            "S3_BUCKET",
            "S3_ARCHIVE_PREFIX",
            "HTTP_PORT",
            "HTTP_CORS_ORIGINS",
        ):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("DATA_DIR", str(tmp_path))

    def test_defaults(self):
        config = ServerConfig.from_env()

        assert config.archive_backend == ArchiveBackend.S3
        assert config.archival.retention_days == 90
        assert config.archival.batch_size == 1000
        assert config.archival.enabled is True
        assert config.s3.archive_prefix == "records"
        assert config.http.port == 8081

    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ARCHIVE_BACKEND", "memory")
        monkeypatch.setenv("ARCHIVAL_RETENTION_DAYS", "30")
        monkeypatch.setenv("ARCHIVAL_BATCH_SIZE", "250")
        monkeypatch.setenv("ARCHIVAL_ENABLED", "false")
        monkeypatch.setenv("PRIMARY_DB_FILE", "hot.db")
        monkeypatch.setenv("HTTP_CORS_ORIGINS", "https://a.example, https://b.example")

        config = ServerConfig.from_env()

        assert config.archive_backend == ArchiveBackend.MEMORY
        assert config.archival.retention_days == 30
        assert config.archival.batch_size == 250
        assert config.archival.enabled is False
        assert config.storage.db_path == str(tmp_path / "hot.db")
        assert config.http.cors_origins == ("https://a.example", "https://b.example")

    def test_invalid_backend(self, monkeypatch):
        monkeypatch.setenv("ARCHIVE_BACKEND", "tape")
        with pytest.raises(ValueError, match="ARCHIVE_BACKEND"):
            ServerConfig.from_env()

    def test_invalid_retention(self, monkeypatch):
        monkeypatch.setenv("ARCHIVAL_RETENTION_DAYS", "0")
        with pytest.raises(ValueError, match="RETENTION"):
            ServerConfig.from_env()

    def test_invalid_batch_size(self):
        config = ServerConfig(archival=ArchivalConfig(batch_size=0))
        with pytest.raises(ValueError, match="BATCH_SIZE"):
            config.validate()

    def test_s3_requires_bucket(self, monkeypatch):
        monkeypatch.setenv("S3_BUCKET", "")
        with pytest.raises(ValueError, match="S3_BUCKET"):
            ServerConfig.from_env()

    def test_sections_are_frozen(self):
        with pytest.raises(AttributeError):
            HttpConfig().port = 1
        with pytest.raises(AttributeError):
            StorageConfig().data_dir = "/tmp"

    def test_log_config_redacts_secrets(self, caplog):
        config = ServerConfig()
        with caplog.at_level("INFO"):
            config.log_config()
        for record in caplog.records:
            assert not hasattr(record, "secret_access_key")
