"""Tests for application settings."""

from pumphistory.config import Settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("LOG_FORMAT", "LOG_LEVEL", "SERVICE_NAME", "DEFAULT_DEVICE_FAMILY"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)
        assert settings.log_format == "json"
        assert settings.log_level == "INFO"
        assert settings.service_name == "pumphistory"
        assert settings.default_device_family == "insulet"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "text")
        monkeypatch.setenv("DEFAULT_DEVICE_FAMILY", "tandem")

        settings = Settings(_env_file=None)
        assert settings.log_format == "text"
        assert settings.default_device_family == "tandem"
