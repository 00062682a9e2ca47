"""Unit tests for ConfigManager loading, precedence and validation."""

import os
from typing import Callable

import pytest

from automapping import SettingsError
from automapping.config import ConfigManager, get_config, reset_config


@pytest.mark.unit
class TestConfigDefaults:
    """Tests for the built-in defaults."""

    def test_defaults_should_be_loaded(self) -> None:
        config = ConfigManager()

        assert config.get("LOG_LEVEL") == "INFO"
        assert config.get_int("MAX_MAPPING_DEPTH") == 64
        assert config.get_bool("ENABLE_COMPILED_MAPPERS") is True
        assert config.get_bool("LOG_CONVERSION_FAILURES") is False

    def test_missing_key_should_return_default(self) -> None:
        config = ConfigManager()

        assert config.get("UNKNOWN", "fallback") == "fallback"
        assert config.get_int("UNKNOWN") is None


@pytest.mark.unit
class TestConfigSources:
    """Tests for settings files, environment variables and overrides."""

    def test_environment_variables_should_override_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test AUTOMAPPING_ prefixed environment overrides.

        Given: Environment variables for an int and a bool setting.
        When: A ConfigManager is created.
        Then: Values are converted to the defaults' types.
        """
        monkeypatch.setenv("AUTOMAPPING_MAX_MAPPING_DEPTH", "10")
        monkeypatch.setenv("AUTOMAPPING_ENABLE_COMPILED_MAPPERS", "false")

        config = ConfigManager()

        assert config.get("MAX_MAPPING_DEPTH") == 10
        assert config.get("ENABLE_COMPILED_MAPPERS") is False

    def test_env_file_should_be_loaded(self, tmp_path) -> None:
        env_file = tmp_path / "custom.env"
        env_file.write_text("AUTOMAPPING_LOG_LEVEL=DEBUG\n")

        try:
            config = ConfigManager(env_file=str(env_file))
            assert config.get("LOG_LEVEL") == "DEBUG"
        finally:
            # load_dotenv writes straight to os.environ
            os.environ.pop("AUTOMAPPING_LOG_LEVEL", None)

    def test_settings_file_should_be_applied_before_environment(
        self, settings_file_factory: Callable[..., str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test precedence between file and environment.

        Given: A settings file and an environment variable for the same key.
        When: A ConfigManager is created.
        Then: The environment wins, and file-only keys are kept.
        """
        path = settings_file_factory('{"max_mapping_depth": 20, "log_level": "WARNING"}')
        monkeypatch.setenv("AUTOMAPPING_MAX_MAPPING_DEPTH", "30")

        config = ConfigManager(settings_file=path)

        assert config.get("MAX_MAPPING_DEPTH") == 30
        assert config.get("LOG_LEVEL") == "WARNING"

    def test_overrides_should_win_over_everything(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTOMAPPING_MAX_MAPPING_DEPTH", "30")

        config = ConfigManager(overrides={"max_mapping_depth": 5})

        assert config.get("MAX_MAPPING_DEPTH") == 5


@pytest.mark.unit
class TestConfigValidation:
    """Tests for invalid settings."""

    def test_unparseable_environment_value_should_raise(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTOMAPPING_MAX_MAPPING_DEPTH", "deep")

        with pytest.raises(SettingsError) as exc_info:
            ConfigManager()

        assert exc_info.value.code == "invalid_setting"
        assert exc_info.value.details["key"] == "MAX_MAPPING_DEPTH"

    @pytest.mark.parametrize(
        "overrides",
        [{"LOG_LEVEL": "LOUD"}, {"MAX_MAPPING_DEPTH": 0}, {"MAX_MAPPING_DEPTH": True}, {"MAX_MAPPING_DEPTH": "8"}],
    )
    def test_out_of_range_values_should_raise(self, overrides: dict) -> None:
        with pytest.raises(SettingsError):
            ConfigManager(overrides=overrides)

    def test_missing_settings_file_should_raise(self, tmp_path) -> None:
        with pytest.raises(SettingsError) as exc_info:
            ConfigManager(settings_file=str(tmp_path / "absent.json"))

        assert exc_info.value.code == "missing_settings_file"

    @pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
    def test_invalid_settings_file_should_raise(
        self, settings_file_factory: Callable[..., str], content: str
    ) -> None:
        with pytest.raises(SettingsError) as exc_info:
            ConfigManager(settings_file=settings_file_factory(content))

        assert exc_info.value.code == "invalid_settings_file"


@pytest.mark.unit
class TestGlobalConfig:
    """Tests for the lazily created global configuration."""

    def test_get_config_should_return_singleton_until_reset(self) -> None:
        reset_config()
        try:
            first = get_config()

            assert get_config() is first

            reset_config()

            assert get_config() is not first
        finally:
            reset_config()
