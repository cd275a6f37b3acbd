"""Unit tests for configuration loading."""

import os

from meter_cycles.config import Settings, load_env_file


class TestSettings:
    """Tests for the Settings model."""

    def test_defaults(self, monkeypatch):
        for name in ("UPSTREAM_TIMEOUT_SECONDS", "ALLOWED_SERVICES", "LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.allowed_services == ["WATER", "ELECTRIC"]
        assert settings.inactive_unit_statuses == ["INACTIVE"]
        assert settings.upstream_timeout_seconds == 10.0
        assert settings.log_file == "logs/server.log"

    def test_test_database_url_is_active(self):
        """The test run uses an in-memory database."""
        assert Settings().database_url == "sqlite:///:memory:"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("UNIT_DIRECTORY_URL", "http://units.internal:8080")
        monkeypatch.setenv("UPSTREAM_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("ALLOWED_SERVICES", '["WATER"]')

        settings = Settings(_env_file=None)

        assert settings.unit_directory_url == "http://units.internal:8080"
        assert settings.upstream_timeout_seconds == 2.5
        assert settings.allowed_services == ["WATER"]

    def test_load_from_env_file(self, monkeypatch, tmp_path):
        """Test that configuration loads from .env file."""
        env_file = tmp_path / ".env"
        env_file.write_text("METER_REGISTRY_URL=http://meters-from-env\nLOG_LEVEL=DEBUG\n")
        monkeypatch.delenv("METER_REGISTRY_URL", raising=False)
        monkeypatch.delenv("LOG_LEVEL", raising=False)

        original_cwd = os.getcwd()
        try:
            os.chdir(tmp_path)
            settings = Settings()
        finally:
            os.chdir(original_cwd)

        assert settings.meter_registry_url == "http://meters-from-env"
        assert settings.log_level == "DEBUG"

    def test_env_overrides_env_file(self, monkeypatch, tmp_path):
        """Test that environment variables override .env file."""
        env_file = tmp_path / ".env"
        env_file.write_text("INVOICE_SERVICE_URL=http://from-file\n")
        monkeypatch.setenv("INVOICE_SERVICE_URL", "http://from-env")

        original_cwd = os.getcwd()
        try:
            os.chdir(tmp_path)
            settings = Settings()
        finally:
            os.chdir(original_cwd)

        assert settings.invoice_service_url == "http://from-env"


class TestLoadEnvFile:
    """Tests for loading a .env file into the process environment."""

    def test_values_reach_environment(self, monkeypatch, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("LOG_FILE=logs/from-dotenv.log\n")
        monkeypatch.setenv("LOG_FILE", "placeholder")
        monkeypatch.delenv("LOG_FILE")

        assert load_env_file(env_file) is True
        assert os.environ["LOG_FILE"] == "logs/from-dotenv.log"
        assert Settings(_env_file=None).log_file == "logs/from-dotenv.log"

    def test_environment_wins_over_file(self, monkeypatch, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("LOG_FILE=logs/from-dotenv.log\n")
        monkeypatch.setenv("LOG_FILE", "logs/from-env.log")

        load_env_file(env_file)

        assert os.environ["LOG_FILE"] == "logs/from-env.log"

    def test_missing_file_is_skipped(self, tmp_path):
        assert load_env_file(tmp_path / "missing.env") is False
