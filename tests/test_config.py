from pathlib import Path

import pytest

from chatdispatch.config import ENV_CONFIG_PATH, ConfigError, load_config
from chatdispatch.settings import DispatchSettings, load_settings, validate_settings_data


class TestLoadConfig:
    def test_load_from_explicit_path(self, tmp_path: Path) -> None:
        config_file = tmp_path / "chatdispatch.toml"
        config_file.write_text('default_prefix = "!"')

        config, path = load_config(config_file)

        assert config["default_prefix"] == "!"
        assert path == config_file

    def test_env_path_is_used(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        config_file = tmp_path / "env.toml"
        config_file.write_text("cache_ttl_s = 30")
        monkeypatch.setenv(ENV_CONFIG_PATH, str(config_file))

        config, path = load_config()

        assert config == {"cache_ttl_s": 30}
        assert path == config_file

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Missing config file"):
            load_config(tmp_path / "nonexistent.toml")

    def test_malformed_toml_raises(self, tmp_path: Path) -> None:
        bad_file = tmp_path / "bad.toml"
        bad_file.write_text("invalid = [unclosed")

        with pytest.raises(ConfigError, match="Malformed TOML"):
            load_config(bad_file)

    def test_path_exists_but_is_directory(self, tmp_path: Path) -> None:
        dir_path = tmp_path / "config_dir"
        dir_path.mkdir()

        with pytest.raises(ConfigError, match="Failed to read config file"):
            load_config(dir_path)

    def test_no_config_anywhere_is_empty(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv(ENV_CONFIG_PATH, raising=False)
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(
            "chatdispatch.config.HOME_CONFIG_PATH", tmp_path / "home" / "missing.toml"
        )

        assert load_config() == ({}, None)

    def test_local_config_is_found(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv(ENV_CONFIG_PATH, raising=False)
        monkeypatch.chdir(tmp_path)
        local = tmp_path / ".chatdispatch" / "chatdispatch.toml"
        local.parent.mkdir()
        local.write_text('default_tier = "pro"')

        config, path = load_config()

        assert config == {"default_tier": "pro"}
        assert path == local


class TestSettings:
    def test_defaults(self) -> None:
        settings = DispatchSettings()

        assert settings.default_prefix == "."
        assert settings.cache_ttl_s == 600.0
        assert settings.status_batch_delay_s == 1.0
        assert settings.chat_log_limit == 1000
        assert settings.broadcast_chat_id == "status@broadcast"
        assert settings.store_path.is_absolute()

    def test_unknown_key_is_rejected(self) -> None:
        with pytest.raises(ConfigError, match="Invalid config"):
            validate_settings_data({"bot_token": "x"}, config_path=None)

    def test_blank_prefix_is_rejected(self) -> None:
        with pytest.raises(ConfigError):
            validate_settings_data({"default_prefix": "  "}, config_path=None)

    def test_non_positive_ttl_is_rejected(self) -> None:
        with pytest.raises(ConfigError):
            validate_settings_data({"cache_ttl_s": 0}, config_path=None)

    def test_load_settings_from_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "chatdispatch.toml"
        config_file.write_text(
            'default_prefix = "!"\n'
            f'store_path = "{tmp_path / "settings.db"}"\n'
        )

        settings, path = load_settings(config_file)

        assert path == config_file
        assert settings.default_prefix == "!"
        assert settings.store_path == tmp_path / "settings.db"
