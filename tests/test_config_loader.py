"""Tests for configuration loader."""

import tempfile
from pathlib import Path

import pytest
import yaml

from folder_sync.config_loader import (
    Config,
    ConfigError,
    SyncMode,
    load_config,
    load_config_from_env,
)


def test_defaults():
    """Test that optional settings fall back to their defaults."""
    config = Config({"folder1": "/in", "folder2": "/out"})

    assert config.sync_mode is SyncMode.ONE_WAY
    assert config.max_retries == 3
    assert config.busy_timeout_seconds == 60.0
    assert config.busy_retry_interval_seconds == 0.2
    assert config.compare_before_copy is True
    assert config.buffer_size == 10000
    assert config.echo_window_seconds == 1.0
    assert config.ignore_extensions == []
    assert config.log_mute == []


def test_config_missing_required_keys():
    """Test that missing required keys raise ConfigError."""
    with pytest.raises(ConfigError, match="Missing required config key: folder2"):
        Config({"folder1": "/in"})


def test_blank_folder_rejected():
    """Test that a blank folder is an invalid configuration."""
    with pytest.raises(ConfigError, match="must not be blank"):
        Config({"folder1": "   ", "folder2": "/out"})


def test_non_string_folder_rejected():
    with pytest.raises(ConfigError, match="must be a string"):
        Config({"folder1": 42, "folder2": "/out"})


@pytest.mark.parametrize(
    "value, expected",
    [
        ("OneWay", SyncMode.ONE_WAY),
        ("TwoWaySourceFirst", SyncMode.TWO_WAY_SOURCE_FIRST),
        ("TwoWayDestFirst", SyncMode.TWO_WAY_DEST_FIRST),
        ("two_way_dest_first", SyncMode.TWO_WAY_DEST_FIRST),
    ],
)
def test_sync_mode_parsing(value, expected):
    """Test that modes are accepted by value or member name."""
    config = Config({"folder1": "/in", "folder2": "/out", "sync_mode": value})

    assert config.sync_mode is expected


def test_unknown_sync_mode_rejected():
    """Test that an unknown mode is an invalid configuration."""
    with pytest.raises(ConfigError, match="Unknown sync mode"):
        Config({"folder1": "/in", "folder2": "/out", "sync_mode": "Mirror"})


def test_two_way_flag():
    assert SyncMode.ONE_WAY.is_two_way is False
    assert SyncMode.TWO_WAY_SOURCE_FIRST.is_two_way is True
    assert SyncMode.TWO_WAY_DEST_FIRST.is_two_way is True


def test_non_positive_timeout_rejected():
    """Test that busy-file timeouts must be positive."""
    with pytest.raises(ConfigError, match="busy_file.timeout_seconds"):
        Config({"folder1": "/in", "folder2": "/out", "busy_file": {"timeout_seconds": 0}})


def test_negative_retries_rejected():
    with pytest.raises(ConfigError, match="max_retries"):
        Config({"folder1": "/in", "folder2": "/out", "retry": {"max_retries": -1}})


def test_unknown_mute_severity_rejected():
    """Test that only info, warning and error can be muted."""
    with pytest.raises(ConfigError, match="logging.mute"):
        Config({"folder1": "/in", "folder2": "/out", "logging": {"mute": ["verbose"]}})


def test_empty_sections_use_defaults():
    """Test that sections left empty in YAML (None) behave like missing ones."""
    config = Config({"folder1": "/in", "folder2": "/out", "ignore": None, "logging": None})

    assert config.ignore_filenames_exact == []
    assert config.log_level == "INFO"


def test_load_sample_config(sample_config):
    """Test loading the sample YAML configuration."""
    config = load_config(str(sample_config))

    assert config.sync_mode is SyncMode.TWO_WAY_SOURCE_FIRST
    assert config.max_retries == 5
    assert config.busy_retry_interval_seconds == 0.05
    assert config.ignore_extensions == [".tmp"]
    assert config.ignore_filenames_prefix == ["~$"]
    assert config.log_mute == ["warning"]


def test_config_from_yaml_with_mode():
    """Test loading config from YAML with a sync mode."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.safe_dump(
            {"folder1": "/in", "folder2": "/out", "sync_mode": "TwoWayDestFirst"},
            f,
        )
        config_path = f.name

    try:
        config = load_config(config_path)
        assert config.sync_mode is SyncMode.TWO_WAY_DEST_FIRST
    finally:
        Path(config_path).unlink()


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigError, match="Config file not found"):
        load_config(str(tmp_path / "missing.yaml"))


def test_config_file_must_be_mapping(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n")

    with pytest.raises(ConfigError, match="mapping"):
        load_config(str(path))


def test_load_config_from_env(sample_config, monkeypatch):
    """Test loading config through the environment variable."""
    monkeypatch.setenv("FOLDER_SYNC_CONFIG", str(sample_config))

    config = load_config_from_env()

    assert config.max_retries == 5


def test_load_config_from_env_unset(monkeypatch):
    monkeypatch.delenv("FOLDER_SYNC_CONFIG", raising=False)

    with pytest.raises(ConfigError, match="not set"):
        load_config_from_env()


def test_non_positive_echo_window_rejected():
    with pytest.raises(ConfigError, match="watcher.echo_window_seconds"):
        Config({"folder1": "/in", "folder2": "/out", "watcher": {"echo_window_seconds": 0}})
