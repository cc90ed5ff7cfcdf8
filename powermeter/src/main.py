"""
Collector daemon main loop.

Every poll interval, each enabled device from the registry is polled once:
meter session -> parser -> exclusive write to the device's monthly shard.
Devices are polled concurrently; polls of the same device are serialized by
a per-device lock, so only one writer ever targets a device's shard.

A failed poll (timeout, refused connection, transaction error) is logged and
does not affect other devices or the loop; the device is simply polled again
on the next tick. Graceful shutdown on SIGTERM/SIGINT sets a shared
asyncio.Event and lets the current cycle finish.

Structured JSON logging is used for all events.

CHANGELOG:
- 2026-10-18: Take session defaults from the protocol constants (STORY-014)
- 2026-10-18: Serialize polls per device with an asyncio.Lock (STORY-012)
- 2026-10-18: Initial creation (STORY-012)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from powermeter.src.errors import CollectorError
from powermeter.src.ingestion import poll_device
from powermeter.src.protocol import DEFAULT_TERMINAL_CHANNEL, SESSION_TIMEOUT_S

if TYPE_CHECKING:
    from powermeter.src.models import Device
    from powermeter.src.registry import DeviceRegistry
    from powermeter.src.store import ShardedStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging for the collector daemon.

    Sets up the root logger with a JSON-formatted handler writing to stderr.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def log_config_summary(settings: object) -> None:
    """Log the effective configuration at startup.

    Args:
        settings: A CollectorSettings instance (or any object with the same attrs).
    """
    logger.info(
        "Collector starting with config: "
        "data_root=%s, registry_path=%s, poll_interval_s=%s, "
        "read_timeout_s=%s, terminal_channel=%s",
        settings.data_root,  # type: ignore[attr-defined]
        settings.registry_path,  # type: ignore[attr-defined]
        settings.poll_interval_s,  # type: ignore[attr-defined]
        settings.read_timeout_s,  # type: ignore[attr-defined]
        settings.terminal_channel,  # type: ignore[attr-defined]
    )


# ---------------------------------------------------------------------------
# Single-iteration functions (easily testable)
# ---------------------------------------------------------------------------


async def _poll_once(
    *,
    device: Device,
    registry: DeviceRegistry,
    store: ShardedStore,
    lock: asyncio.Lock,
    terminal_channel: int,
    timeout_s: float,
) -> bool:
    """Poll one device once, catching every error.

    A poll still running for the same device causes this one to be skipped.

    Returns:
        True if the readings were stored, False otherwise.
    """
    if lock.locked():
        logger.warning("%s Previous poll still running, skipping", device.ip_address)
        return False

    async with lock:
        try:
            count = await poll_device(
                device,
                store=store,
                channels=registry.enabled_channels(device.ip_address),
                ts=datetime.now(tz=UTC),
                terminal_channel=terminal_channel,
                timeout_s=timeout_s,
            )
        except CollectorError as exc:
            logger.error("%s Poll failed: %s", device.ip_address, exc)
            return False
        except Exception:
            logger.error("%s Poll cycle error", device.ip_address, exc_info=True)
            return False

    logger.info("%s Poll success: stored %d reading(s)", device.ip_address, count)
    return True


async def poll_all(
    *,
    registry: DeviceRegistry,
    store: ShardedStore,
    locks: dict[str, asyncio.Lock],
    terminal_channel: int,
    timeout_s: float,
) -> int:
    """Poll every enabled device concurrently.

    Returns:
        Number of devices polled successfully.
    """
    devices = registry.enabled_devices()
    results = await asyncio.gather(
        *(
            _poll_once(
                device=device,
                registry=registry,
                store=store,
                lock=locks.setdefault(device.ip_address, asyncio.Lock()),
                terminal_channel=terminal_channel,
                timeout_s=timeout_s,
            )
            for device in devices
        )
    )
    return sum(1 for ok in results if ok)


# ---------------------------------------------------------------------------
# Loop runner
# ---------------------------------------------------------------------------


async def run_loops(
    *,
    registry: DeviceRegistry,
    store: ShardedStore,
    poll_interval_s: float,
    shutdown_event: asyncio.Event,
    terminal_channel: int = DEFAULT_TERMINAL_CHANNEL,
    timeout_s: float = SESSION_TIMEOUT_S,
) -> None:
    """Poll all devices every poll_interval_s until shutdown_event is set."""
    logger.info("Poll loop started (interval=%ss)", poll_interval_s)
    locks: dict[str, asyncio.Lock] = {}
    while not shutdown_event.is_set():
        ok = await poll_all(
            registry=registry,
            store=store,
            locks=locks,
            terminal_channel=terminal_channel,
            timeout_s=timeout_s,
        )
        logger.info("Poll cycle finished: %d device(s) stored", ok)
        # Use wait with timeout so we can check shutdown between sleeps
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(
                shutdown_event.wait(),
                timeout=poll_interval_s,
            )
    logger.info("Poll loop stopped")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build components, run the poll loop.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    from powermeter.src.config import CollectorSettings
    from powermeter.src.registry import DeviceRegistry
    from powermeter.src.store import ShardedStore

    settings = CollectorSettings()
    configure_logging(settings.log_level)
    log_config_summary(settings)

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    await run_loops(
        registry=DeviceRegistry.from_file(settings.registry_path),
        store=ShardedStore(settings.data_root),
        poll_interval_s=settings.poll_interval_s,
        shutdown_event=shutdown_event,
        terminal_channel=settings.terminal_channel,
        timeout_s=settings.read_timeout_s,
    )


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event."""
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the collector daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
