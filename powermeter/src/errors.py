"""
Exception taxonomy for the collector.

Connection and transaction errors reject one device poll; the caller decides
whether to try again on the next tick. Lines the parser does not recognise are
never raised, they are skipped and logged by the parser.

CHANGELOG:
- 2026-10-18: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations


class CollectorError(Exception):
    """Base class for all collector errors."""


class MeterConnectionError(CollectorError):
    """The TCP session with a meter was refused, reset or otherwise failed."""

    def __init__(self, host: str, port: int, reason: str) -> None:
        super().__init__(f"{host}:{port}: {reason}")
        self.host = host
        self.port = port
        self.reason = reason


class ConnectionTimeout(MeterConnectionError):
    """The meter did not finish its response within the session timeout."""

    def __init__(self, host: str, port: int, timeout_s: float) -> None:
        super().__init__(host, port, f"no complete response within {timeout_s:g}s")
        self.timeout_s = timeout_s


class NoStoreAvailable(CollectorError):
    """A shard does not exist and creating it was not allowed."""

    def __init__(self, path: str) -> None:
        super().__init__(f"No database exists at {path}")
        self.path = path


class TransactionError(CollectorError):
    """Beginning or committing a shard transaction failed."""
