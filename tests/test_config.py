"""Tests for persisted settings."""

import json

import pytest

from foldwise.core.config import (
    Settings,
    config_path,
    load_settings,
    reset_settings,
    save_settings,
    settings_from_mapping,
    update_setting,
)
from foldwise.core.errors import ConfigError


class TestLoadSettings:
    def test_defaults_without_file(self):
        settings = load_settings()

        assert settings == Settings()
        assert settings.concurrency == 10
        assert settings.max_attempts == 3
        assert settings.preview_chars == 1000

    def test_config_lives_in_override_dir(self, isolated_config):
        assert config_path() == isolated_config / "config.json"

    def test_file_values_are_used(self):
        save_settings(Settings(provider="anthropic", concurrency=4))

        settings = load_settings()

        assert settings.provider == "anthropic"
        assert settings.concurrency == 4

    def test_environment_wins_over_file(self, monkeypatch):
        save_settings(Settings(concurrency=4))
        monkeypatch.setenv("FOLDWISE_CONCURRENCY", "7")
        monkeypatch.setenv("FOLDWISE_MODEL", "llama3.1")

        settings = load_settings()

        assert settings.concurrency == 7
        assert settings.model == "llama3.1"

    def test_malformed_json(self):
        config_path().write_text("{not json", encoding="utf-8")

        with pytest.raises(ConfigError):
            load_settings()

    def test_non_object_json(self):
        config_path().write_text("[1, 2]", encoding="utf-8")

        with pytest.raises(ConfigError):
            load_settings()

    def test_unknown_keys_are_ignored(self):
        config_path().write_text(json.dumps({"colour": "blue", "concurrency": 2}), encoding="utf-8")

        assert load_settings().concurrency == 2

    @pytest.mark.parametrize(
        "env, value",
        [
            ("FOLDWISE_CONCURRENCY", "0"),
            ("FOLDWISE_CONCURRENCY", "many"),
            ("FOLDWISE_PROVIDER", "carrier-pigeon"),
            ("FOLDWISE_SUFFIX_FORMAT", "{stem}-copy{suffix}"),
            ("FOLDWISE_SUFFIX_FORMAT", "{stem}_{n}_{ext}"),
            ("FOLDWISE_SUFFIX_FORMAT", "{stem}_{n}{0}"),
            ("FOLDWISE_SUFFIX_FORMAT", "{stem}_{n:d}{suffix:d}"),
            ("FOLDWISE_SUFFIX_FORMAT", "{{n}}{stem}{suffix}"),
            ("FOLDWISE_SUFFIX_FORMAT", "{n}/{stem}{suffix}"),
        ],
    )
    def test_invalid_values(self, monkeypatch, env, value):
        monkeypatch.setenv(env, value)

        with pytest.raises(ConfigError):
            load_settings()

    def test_formatted_counter_is_accepted(self, monkeypatch):
        monkeypatch.setenv("FOLDWISE_SUFFIX_FORMAT", "{stem}-{n:03d}{suffix}")

        assert load_settings().suffix_format == "{stem}-{n:03d}{suffix}"


class TestUpdateSetting:
    def test_set_and_persist(self):
        updated = update_setting("max_attempts", "5")

        assert updated.max_attempts == 5
        assert json.loads(config_path().read_text())["max_attempts"] == 5

    def test_unknown_key(self):
        with pytest.raises(ConfigError):
            update_setting("colour", "blue")

    def test_changing_provider_clears_model(self):
        update_setting("model", "gpt-4o")

        updated = update_setting("provider", "ollama")

        assert updated.provider == "ollama"
        assert updated.model is None

    def test_invalid_value_is_not_saved(self):
        with pytest.raises(ConfigError):
            update_setting("concurrency", "-3")

        assert not config_path().exists()

    def test_reset(self):
        update_setting("concurrency", "2")

        reset_settings()
        reset_settings()

        assert not config_path().exists()
        assert load_settings() == Settings()


def test_settings_from_mapping_coerces_types():
    settings = settings_from_mapping({"base_delay": "0.25", "preview_chars": 64, "model": ""})

    assert settings.base_delay == 0.25
    assert settings.preview_chars == 64
    assert settings.model is None
