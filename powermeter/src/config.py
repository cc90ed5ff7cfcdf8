"""
Collector configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or .env files;
no hardcoded paths or meter addresses.

CHANGELOG:
- 2026-10-18: Add TERMINAL_CHANNEL for device families with fewer channels (STORY-004)
- 2026-10-18: Initial creation (STORY-001)

TODO:
- None
"""

import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings


class CollectorSettings(BaseSettings):
    """Collector configuration.

    Attributes:
        data_root: Root directory holding one sub-directory of shards per
            device.
        registry_path: JSON file listing devices and channels.
        poll_interval_s: Seconds between poll cycles.
        read_timeout_s: Timeout covering connect and read of one meter
            session.
        terminal_channel: Highest channel index the meters report; its line
            marks the end of a response.
        log_level: Root log level name.
    """

    data_root: str
    registry_path: str
    poll_interval_s: int = 3600
    read_timeout_s: float = 5.0
    terminal_channel: int = 13
    log_level: str = "INFO"

    @field_validator("poll_interval_s")
    @classmethod
    def poll_interval_must_be_positive(cls, v: int) -> int:
        """Validate the poll interval is at least one second."""
        if v < 1:
            raise ValueError("POLL_INTERVAL_S must be >= 1")
        return v

    @field_validator("read_timeout_s")
    @classmethod
    def read_timeout_must_be_positive(cls, v: float) -> float:
        """Validate the session timeout is positive."""
        if v <= 0:
            raise ValueError("READ_TIMEOUT_S must be > 0")
        return v

    @field_validator("terminal_channel")
    @classmethod
    def terminal_channel_must_fit_protocol(cls, v: int) -> int:
        """Validate the terminal channel fits the 1-2 digit channel index."""
        if v < 0 or v > 99:
            raise ValueError("TERMINAL_CHANNEL must be between 0 and 99")
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        """Validate and normalise the log level name."""
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"LOG_LEVEL '{v}' is not a valid logging level")
        return level

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
