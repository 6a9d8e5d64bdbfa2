"""
Tests for configuration and pipeline settings.
"""

import stat

import pytest

from storyverse import config
from storyverse.config import DEFAULT_MODEL, PipelineSettings, load_settings


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point the config directory at a temp dir and clear overrides."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    for var in ("ANTHROPIC_API_KEY", "STORYVERSE_MODEL", "STORYVERSE_HOOK_PACK"):
        monkeypatch.delenv(var, raising=False)
    return tmp_path


class TestConfigFile:
    """Config file storage."""

    def test_config_dir_under_xdg(self, isolated_config):
        assert config.get_config_dir() == isolated_config / "storyverse"
        assert config.get_config_dir().is_dir()

    def test_missing_config_is_empty(self):
        assert config.load_config() == {}

    def test_corrupt_config_is_empty(self):
        config.get_config_path().write_text("{not json", encoding="utf-8")
        assert config.load_config() == {}

    def test_save_is_private(self):
        config.save_config({"a": 1})
        mode = stat.S_IMODE(config.get_config_path().stat().st_mode)
        assert mode == 0o600
        assert config.load_config() == {"a": 1}


class TestApiKey:
    """API key lookup and storage."""

    def test_env_wins(self, monkeypatch):
        config.set_api_key("sk-ant-stored")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-env")
        assert config.get_api_key() == "sk-ant-env"

    def test_stored_key(self):
        config.set_api_key("sk-ant-stored")
        assert config.get_api_key() == "sk-ant-stored"

    def test_clear(self):
        config.set_api_key("sk-ant-stored")
        config.clear_api_key()
        assert config.get_api_key() is None

    def test_check_auth_returns_existing(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-env")
        assert config.check_auth_or_prompt() == "sk-ant-env"


class TestLoadSettings:
    """Pipeline settings resolution."""

    def test_defaults(self):
        settings = load_settings({})
        assert settings == PipelineSettings()
        assert settings.model == DEFAULT_MODEL
        assert settings.hook_pack_count is None

    def test_config_section(self):
        settings = load_settings({"pipeline": {"excerpt_chars": 500, "unknown": True}})
        assert settings.excerpt_chars == 500

    def test_reads_config_file(self):
        config.save_config({"pipeline": {"hook_pack_count": 1}})
        assert load_settings().hook_pack_count == 1

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("STORYVERSE_MODEL", "claude-test")
        monkeypatch.setenv("STORYVERSE_HOOK_PACK", "0")
        settings = load_settings({"pipeline": {"model": "other", "hook_pack_count": 4}})
        assert settings.model == "claude-test"
        assert settings.hook_pack_count == 0

    def test_non_integer_hook_pack(self, monkeypatch):
        monkeypatch.setenv("STORYVERSE_HOOK_PACK", "three")
        with pytest.raises(ValueError):
            load_settings({})

    def test_negative_hook_pack(self):
        with pytest.raises(ValueError):
            load_settings({"pipeline": {"hook_pack_count": -1}})

    @pytest.mark.parametrize("retries", [0, -2, "3"])
    def test_invalid_max_retries(self, retries):
        with pytest.raises(ValueError):
            load_settings({"pipeline": {"max_retries": retries}})

    def test_max_retries_from_config(self):
        assert load_settings({"pipeline": {"max_retries": 1}}).max_retries == 1

    def test_to_dict(self):
        assert PipelineSettings().to_dict()["excerpt_chars"] == 15000


class TestMaskKey:
    """Key display."""

    def test_masks_middle(self):
        assert config.mask_key("sk-ant-abcdefghijklmnop") == "sk-ant-a...mnop"

    def test_short_key_fully_masked(self):
        assert config.mask_key("short") == "*****"
