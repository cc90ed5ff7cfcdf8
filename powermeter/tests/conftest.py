"""
Shared test fixtures for collector tests.

Provides environment variable fixtures for CollectorSettings, a registry file
fixture, and isolation from any .env file in the working directory.

CHANGELOG:
- 2026-10-18: Add registry_file fixture (STORY-009)
- 2026-10-18: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from powermeter.tests.fakes import REGISTRY_DATA

# All CollectorSettings environment variable names, used for cleanup.
_ALL_COLLECTOR_ENV_VARS = (
    "DATA_ROOT",
    "REGISTRY_PATH",
    "POLL_INTERVAL_S",
    "READ_TIMEOUT_S",
    "TERMINAL_CHANNEL",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_collector_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Remove all collector env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_COLLECTOR_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def registry_file(tmp_path: Path) -> Path:
    """Write the shared registry JSON to a temp file and return its path."""
    path = tmp_path / "registry.json"
    path.write_text(json.dumps(REGISTRY_DATA), encoding="utf-8")
    return path


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set all required and optional environment variables for CollectorSettings."""
    env = {
        "DATA_ROOT": "/srv/powermeters",
        "REGISTRY_PATH": "/etc/powermeter/registry.json",
        "POLL_INTERVAL_S": "900",
        "READ_TIMEOUT_S": "2.5",
        "TERMINAL_CHANNEL": "7",
        "LOG_LEVEL": "debug",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only the required environment variables (no optional ones)."""
    env = {
        "DATA_ROOT": "/data",
        "REGISTRY_PATH": "/data/registry.json",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env
