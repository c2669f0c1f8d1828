"""Pytest configuration and shared fixtures for opencode-bridge tests."""

import tempfile
from collections.abc import Iterator
from pathlib import Path

import pytest

from opencode_bridge.config.app import BridgeConfig


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def default_config() -> BridgeConfig:
    """Create a default BridgeConfig for testing."""
    return BridgeConfig()
