"""Tests for configuration loading."""

import pytest

from patchgate_core.config import DEFAULT_CONFIG, load_config, ttl_ms_from_config


def test_defaults_applied_when_no_config_file(tmp_path):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    assert config["store"] == "sqlite"
    assert config["store_path"] == ".patchgate.db"
    assert config["session_ttl_hours"] == 24
    assert config["commit_message_prefix"] == "chore(geo)"
    assert config["max_payload_bytes"] == 1024 * 1024
    assert config["port"] == 8787


def test_config_file_overrides_defaults(tmp_path):
    cfg = tmp_path / ".patchgate.yml"
    cfg.write_text("store: memory\nsession_ttl_hours: 2\n")
    config = load_config(config_path=str(cfg))
    assert config["store"] == "memory"
    assert config["session_ttl_hours"] == 2
    assert config["github_timeout"] == 30


def test_empty_config_file(tmp_path):
    cfg = tmp_path / ".patchgate.yml"
    cfg.write_text("")
    config = load_config(config_path=str(cfg))
    assert config["store"] == "sqlite"


def test_cli_overrides_config_file(tmp_path):
    cfg = tmp_path / ".patchgate.yml"
    cfg.write_text("port: 9000\n")
    config = load_config(config_path=str(cfg), cli_overrides={"port": 9100})
    assert config["port"] == 9100


def test_none_cli_overrides_ignored(tmp_path):
    cfg = tmp_path / ".patchgate.yml"
    cfg.write_text("host: 0.0.0.0\n")
    config = load_config(config_path=str(cfg), cli_overrides={"host": None})
    assert config["host"] == "0.0.0.0"


def test_github_token_is_not_a_config_key(monkeypatch, tmp_path):
    monkeypatch.setenv("GITHUB_TOKEN", "gh-token")
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    assert "github_token" not in config


def test_defaults_are_not_mutated(tmp_path):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    config["store"] = "memory"
    assert DEFAULT_CONFIG["store"] == "sqlite"


class TestTtlFromConfig:
    def test_default_is_24_hours(self):
        assert ttl_ms_from_config({}) == 86_400_000

    def test_fractional_hours(self):
        assert ttl_ms_from_config({"session_ttl_hours": 0.5}) == 1_800_000

    @pytest.mark.parametrize("hours", [0, -3])
    def test_non_positive_rejected(self, hours):
        with pytest.raises(ValueError):
            ttl_ms_from_config({"session_ttl_hours": hours})

    def test_above_maximum_rejected(self):
        with pytest.raises(ValueError, match="session_ttl_hours"):
            ttl_ms_from_config({"session_ttl_hours": 1e300})
