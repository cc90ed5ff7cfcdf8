"""
Async TCP client for the line-oriented power meter protocol.

One session per poll: connect to the meter, send the literal ``read all``
command, and accumulate the plaintext reply until the line of the terminal
channel (the highest channel index the device family reports) has arrived.
Replies look like::

    channel_0 : 1234.567
    channel_1 : 89.01
    ...
    channel_13 : 0.5

The session is an explicit state machine::

    IDLE -> CONNECTING -> CONNECTED -> RECEIVING -> CLOSING -> DONE
                 \\             \\            \\
                  +-------------+------------+--> FAILED

A single timeout covers the whole connect-and-read phase. Socket errors and
the timeout are raised as typed errors and never retried here; retrying is up
to the caller's next scheduled poll.

If the meter closes the connection before the terminal channel line arrived,
the session still completes with the partial reply and a warning is logged.
A terminal line whose value is never followed by a newline is accepted once
the meter has been quiet for TERMINAL_QUIET_S. If the meter neither closes
nor sends the terminal channel, the timeout fails the session.

CHANGELOG:
- 2026-10-18: Accept an unterminated last line once the meter goes quiet (STORY-014)
- 2026-10-18: Require the terminal channel line to be complete before closing (STORY-005)
- 2026-10-18: Initial creation (STORY-004)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from enum import Enum

from powermeter.src.errors import ConnectionTimeout, MeterConnectionError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Protocol constants
# ---------------------------------------------------------------------------

READ_COMMAND: bytes = b"read all"
"""Command that asks the meter to dump every channel."""

DEFAULT_TERMINAL_CHANNEL: int = 13
"""Highest channel index of the current device family (channels 0..13)."""

SESSION_TIMEOUT_S: float = 5.0
"""Timeout in seconds covering connect and read of one session."""

TERMINAL_QUIET_S: float = 0.25
"""Silence after a partial terminal line that completes the reply."""

_CHUNK_SIZE = 4096


class SessionState(Enum):
    """Lifecycle states of a meter session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECEIVING = "receiving"
    CLOSING = "closing"
    DONE = "done"
    FAILED = "failed"


def terminal_line_pattern(terminal_channel: int) -> re.Pattern[bytes]:
    """Return a pattern matching a complete line of the terminal channel."""
    return re.compile(rb"(?m)^channel_%d : [^\r\n]*\r?\n" % terminal_channel)


def terminal_marker_pattern(terminal_channel: int) -> re.Pattern[bytes]:
    """Return a pattern matching the start of the terminal channel line."""
    return re.compile(rb"(?m)^channel_%d : " % terminal_channel)


class MeterSession:
    """One TCP session with a power meter.

    Args:
        host: Meter IP address or hostname.
        port: Meter TCP port.
        terminal_channel: Channel index whose line ends the response.
        timeout_s: Timeout covering connect and read.

    Usage::

        async with MeterSession(host="10.0.0.21", port=4001) as session:
            raw = await session.fetch()
    """

    def __init__(
        self,
        *,
        host: str,
        port: int,
        terminal_channel: int = DEFAULT_TERMINAL_CHANNEL,
        timeout_s: float = SESSION_TIMEOUT_S,
    ) -> None:
        self._host = host
        self._port = port
        self._timeout_s = timeout_s
        self._terminal = terminal_line_pattern(terminal_channel)
        self._marker = terminal_marker_pattern(terminal_channel)
        self._state = SessionState.IDLE
        self._buffer = bytearray()
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self.saw_terminal = False

    @property
    def state(self) -> SessionState:
        return self._state

    async def __aenter__(self) -> MeterSession:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Release the socket on every exit path."""
        await self._close_socket()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch(self) -> str:
        """Run the session and return the accumulated reply as text.

        Returns:
            The UTF-8 decoded reply.

        Raises:
            ConnectionTimeout: The reply was not complete within the timeout.
            MeterConnectionError: The connection was refused or broke.
            RuntimeError: The session was already used.
        """
        if self._state is not SessionState.IDLE:
            raise RuntimeError(f"Session already used (state={self._state.value})")

        try:
            await asyncio.wait_for(self._exchange(), timeout=self._timeout_s)
        except TimeoutError as exc:
            self._state = SessionState.FAILED
            logger.error("%s Connection timeout", self._host)
            await self._close_socket()
            raise ConnectionTimeout(self._host, self._port, self._timeout_s) from exc
        except OSError as exc:
            self._state = SessionState.FAILED
            logger.error("%s Connection error: %s", self._host, exc)
            await self._close_socket()
            raise MeterConnectionError(self._host, self._port, str(exc)) from exc

        self._state = SessionState.CLOSING
        await self._close_socket()
        self._state = SessionState.DONE
        logger.info("%s Data received from the server (%d bytes)", self._host, len(self._buffer))
        return self._buffer.decode("utf-8", errors="replace")

    # ------------------------------------------------------------------
    # Internal state transitions
    # ------------------------------------------------------------------

    async def _exchange(self) -> None:
        self._state = SessionState.CONNECTING
        self._reader, self._writer = await asyncio.open_connection(self._host, self._port)
        self._state = SessionState.CONNECTED
        logger.info("%s TCP connection established with the server.", self._host)

        self._writer.write(READ_COMMAND)
        await self._writer.drain()

        self._state = SessionState.RECEIVING
        while True:
            if self._marker.search(self._buffer):
                try:
                    chunk = await asyncio.wait_for(
                        self._reader.read(_CHUNK_SIZE), timeout=TERMINAL_QUIET_S
                    )
                except TimeoutError:
                    logger.debug(
                        "%s Terminal channel line has no newline, accepting it", self._host
                    )
                    self.saw_terminal = True
                    return
            else:
                chunk = await self._reader.read(_CHUNK_SIZE)
            if not chunk:
                if self._marker.search(self._buffer):
                    self.saw_terminal = True
                    return
                logger.warning(
                    "%s Connection closed by meter before terminal channel line, "
                    "keeping partial response",
                    self._host,
                )
                return
            self._buffer.extend(chunk)
            if self._terminal.search(self._buffer):
                self.saw_terminal = True
                return

    async def _close_socket(self) -> None:
        writer, self._writer, self._reader = self._writer, None, None
        if writer is None:
            return
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        logger.debug("%s TCP connection closed.", self._host)


async def read_meter(
    *,
    host: str,
    port: int,
    terminal_channel: int = DEFAULT_TERMINAL_CHANNEL,
    timeout_s: float = SESSION_TIMEOUT_S,
) -> str:
    """Run a single meter session and return its raw reply.

    Raises:
        ConnectionTimeout: The reply was not complete within the timeout.
        MeterConnectionError: The connection was refused or broke.
    """
    async with MeterSession(
        host=host,
        port=port,
        terminal_channel=terminal_channel,
        timeout_s=timeout_s,
    ) as session:
        return await session.fetch()
