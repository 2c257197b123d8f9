"""Unit tests for settings and the configuration file."""

import json
import os
import stat

import pytest

from tagsync.config import (
    Config,
    Settings,
    is_configured,
    normalize_tag,
    normalize_tags,
    parse_delimited_list,
    sanitize_settings,
    settings_warnings,
    setup_issue,
)
from tagsync.exceptions import ConfigError


@pytest.fixture
def config(tmp_path, monkeypatch):
    """Config stored in a temporary directory without env overrides."""
    for name in Config.ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    return Config(tmp_path / "tagsync" / "config.json")


class TestTagNormalization:
    """Tests for tag normalization."""

    def test_case_and_hash_insensitive(self):
        """Test that '#Foo', 'foo' and ' FOO ' normalize alike."""
        assert normalize_tag("#Foo") == normalize_tag("foo") == normalize_tag(" FOO ")

    def test_idempotent(self):
        for raw in ["#Foo", "  bar ", "##Nested/Tag"]:
            once = normalize_tag(raw)
            assert normalize_tag(once) == once

    def test_normalize_tags_dedup_keeps_order(self):
        assert normalize_tags(["#B", "a", "b", "", "  "]) == ["b", "a"]

    def test_parse_delimited_list(self):
        assert parse_delimited_list("a, b\nc,,") == ["a", "b", "c"]


class TestSanitizeSettings:
    """Tests for sanitize_settings."""

    def test_clamps_and_normalizes(self):
        settings = sanitize_settings(
            Settings(
                tags_to_sync=["#Shared", "shared"],
                remote_base_path="notes/",
                poll_interval_seconds=1,
                max_upload_size_mb=0.1,
            )
        )
        assert settings.tags_to_sync == ["shared"]
        assert settings.remote_base_path == "/notes"
        assert settings.poll_interval_seconds == 5
        assert settings.max_upload_size_mb == 1.0

    def test_invalid_numbers_fall_back_to_defaults(self):
        settings = sanitize_settings(
            Settings(poll_interval_seconds="soon", max_upload_size_mb=float("nan"))
        )
        assert settings.poll_interval_seconds == 30
        assert settings.max_upload_size_mb == 20.0

    def test_max_upload_bytes(self):
        assert Settings(max_upload_size_mb=2).max_upload_bytes == 2 * 1024 * 1024


class TestSetupIssue:
    """Tests for setup validation."""

    def test_missing_tags(self):
        settings = Settings(access_token="t")
        assert "tag" in setup_issue(settings)
        assert not is_configured(settings)

    def test_missing_credentials(self):
        settings = Settings(tags_to_sync=["a"])
        assert setup_issue(settings) is not None

    def test_static_token(self):
        assert is_configured(Settings(tags_to_sync=["a"], access_token="t"))

    def test_refresh_token_mode(self):
        settings = Settings(tags_to_sync=["a"], app_key="k", refresh_token="r")
        assert settings.uses_refresh_token
        assert is_configured(settings)

    def test_warnings_for_empty_settings(self):
        warnings = settings_warnings(Settings())
        assert any("tag" in w for w in warnings)
        assert any("token" in w for w in warnings)


class TestConfig:
    """Tests for the Config file manager."""

    def test_load_missing_file_generates_vault_id(self, config):
        """Test that a missing file yields defaults plus a stable id."""
        settings = config.load()
        assert settings.vault_id
        assert settings.remote_base_path == "/"
        assert config.load().vault_id == settings.vault_id

    def test_update_persists(self, config):
        config.update(tags_to_sync=["#Shared"], access_token=" token ")
        data = json.loads(config.get_config_path().read_text())
        assert data["tags_to_sync"] == ["shared"]
        assert data["access_token"] == "token"

    def test_file_permissions(self, config):
        config.update(access_token="secret")
        mode = stat.S_IMODE(os.stat(config.get_config_path()).st_mode)
        assert mode == 0o600

    def test_env_override_not_persisted(self, config, monkeypatch):
        """Test that environment credentials are used but never written."""
        config.update(tags_to_sync=["a"])
        monkeypatch.setenv("TAGSYNC_ACCESS_TOKEN", "from-env")

        assert config.load().access_token == "from-env"
        data = json.loads(config.get_config_path().read_text())
        assert data.get("access_token", "") == ""

    def test_invalid_json_raises(self, config):
        config.get_config_path().parent.mkdir(parents=True)
        config.get_config_path().write_text("{not json")
        with pytest.raises(ConfigError, match="Invalid config file"):
            config.load()

    def test_unknown_keys_ignored(self, config):
        config.get_config_path().parent.mkdir(parents=True)
        config.get_config_path().write_text(json.dumps({"legacy": 1, "vault_id": "v"}))
        assert config.load().vault_id == "v"

    def test_state_file_depends_on_vault_and_base(self, config, tmp_path):
        a = config.state_file_for(Settings(vault_path=str(tmp_path / "a")))
        b = config.state_file_for(Settings(vault_path=str(tmp_path / "b")))
        c = config.state_file_for(
            Settings(vault_path=str(tmp_path / "a"), remote_base_path="/other")
        )
        assert len({a, b, c}) == 3
        assert a.parent == config.config_dir / "sync_state"
