"""Pytest configuration and fixtures."""

import shutil
import tempfile
import time
from pathlib import Path

import pytest


@pytest.fixture
def temp_dirs():
    """Create temporary left and right directories for testing."""
    temp_root = Path(tempfile.mkdtemp())
    left = temp_root / "left"
    right = temp_root / "right"
    left.mkdir()
    right.mkdir()

    yield left, right

    # Cleanup
    shutil.rmtree(temp_root, ignore_errors=True)


@pytest.fixture
def sample_config(tmp_path):
    """Create a sample config file for testing."""
    config_path = tmp_path / "config.yaml"
    config_content = f"""
folder1: {tmp_path / "input"}
folder2: {tmp_path / "output"}
sync_mode: TwoWaySourceFirst

retry:
  max_retries: 5

busy_file:
  timeout_seconds: 10
  retry_interval_seconds: 0.05

ignore:
  extensions:
    - .tmp
  filenames_prefix:
    - "~$"
  filenames_exact:
    - Thumbs.db

logging:
  level: INFO
  file_path: {tmp_path / "logs" / "sync.log"}
  mute:
    - warning
"""
    config_path.write_text(config_content)
    return config_path


@pytest.fixture
def wait_for():
    """Return a helper that polls a predicate until it holds or times out."""

    def _wait_for(predicate, timeout: float = 10.0, interval: float = 0.05) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()

    return _wait_for
