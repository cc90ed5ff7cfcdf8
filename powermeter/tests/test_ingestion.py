"""
Tests for single-device ingestion (meter -> parser -> shard).

Uses FakeMeter as the meter and a temporary data root for the store.

CHANGELOG:
- 2026-10-18: Cover naive ingestion times under a non-UTC host zone (STORY-014)
- 2026-10-18: Initial creation (STORY-011)

TODO:
- None
"""

from __future__ import annotations

import time
from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import patch

import pytest

from powermeter.src.errors import ConnectionTimeout, MeterConnectionError
from powermeter.src.ingestion import poll_device
from powermeter.src.models import Device
from powermeter.src.store import ShardedStore
from powermeter.tests.fakes import FakeMeter, meter_reply

_TS = datetime(2026, 3, 14, 10, 37, 12, tzinfo=UTC)
_VALUES = {ch: 100.0 + ch for ch in range(14)}


def _device(port: int) -> Device:
    return Device(id=1, asset_name="Main hall", ip_address="127.0.0.1", port=port)


class TestPollDevice:
    @pytest.mark.asyncio
    async def test_enabled_lines_are_stored_at_top_of_hour(self, tmp_path: Path) -> None:
        store = ShardedStore(tmp_path)
        async with FakeMeter([meter_reply(_VALUES)], close=False) as meter:
            written = await poll_device(
                _device(meter.port), store=store, channels={0, 5, 7}, ts=_TS
            )

        rows = await store.read_range(
            "127.0.0.1",
            datetime(2026, 3, 1, tzinfo=UTC),
            datetime(2026, 3, 31, tzinfo=UTC),
        )
        assert written == 3
        assert [(r.channel, r.measured_value) for r in rows] == [
            (0, 100000.0),
            (5, 105000.0),
            (7, 107000.0),
        ]
        top_of_hour = int(datetime(2026, 3, 14, 10, tzinfo=UTC).timestamp())
        assert {r.recorded_time for r in rows} == {top_of_hour}

    @pytest.mark.asyncio
    async def test_writes_into_month_shard_of_ingestion_time(self, tmp_path: Path) -> None:
        store = ShardedStore(tmp_path)
        async with FakeMeter([meter_reply(_VALUES)]) as meter:
            await poll_device(_device(meter.port), store=store, channels={1}, ts=_TS)

        assert (tmp_path / "127.0.0.1" / "2026-03-monthly.sqlite").exists()

    @pytest.mark.asyncio
    async def test_terminal_channel_is_passed_to_session(self, tmp_path: Path) -> None:
        store = ShardedStore(tmp_path)
        values = {ch: 1.0 for ch in range(4)}
        async with FakeMeter([meter_reply(values)], close=False) as meter:
            written = await poll_device(
                _device(meter.port),
                store=store,
                channels={0, 1, 2, 3},
                ts=_TS,
                terminal_channel=3,
                timeout_s=2.0,
            )

        assert written == 4

    @pytest.mark.asyncio
    async def test_timeout_propagates_and_nothing_is_written(self, tmp_path: Path) -> None:
        store = ShardedStore(tmp_path)
        async with FakeMeter([b"channel_0 : 1\n"], close=False) as meter:
            with pytest.raises(ConnectionTimeout):
                await poll_device(
                    _device(meter.port), store=store, channels={0}, ts=_TS, timeout_s=0.2
                )

        assert not (tmp_path / "127.0.0.1").exists()

    @pytest.mark.asyncio
    async def test_connection_error_propagates(self, tmp_path: Path) -> None:
        with patch(
            "powermeter.src.protocol.asyncio.open_connection",
            side_effect=ConnectionResetError(104, "Connection reset by peer"),
        ):
            with pytest.raises(MeterConnectionError):
                await poll_device(
                    _device(4001), store=ShardedStore(tmp_path), channels={0}, ts=_TS
                )


@pytest.fixture()
def budapest_host_zone(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Run the test with the host's local zone set to Europe/Budapest."""
    monkeypatch.setenv("TZ", "Europe/Budapest")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


class TestNaiveIngestionTime:
    @pytest.mark.asyncio
    async def test_naive_time_is_utc_for_shard_and_recorded_time(
        self, tmp_path: Path, budapest_host_zone: None
    ) -> None:
        """Just after midnight on March 1st is still February in Budapest local time."""
        store = ShardedStore(tmp_path)
        async with FakeMeter([meter_reply(_VALUES)]) as meter:
            await poll_device(
                _device(meter.port), store=store, channels={0}, ts=datetime(2024, 3, 1, 0, 30)
            )

        rows = await store.read_range(
            "127.0.0.1",
            datetime(2024, 3, 1, tzinfo=UTC),
            datetime(2024, 3, 1, 23, 59, tzinfo=UTC),
        )
        assert (tmp_path / "127.0.0.1" / "2024-03-monthly.sqlite").exists()
        assert [r.recorded_time for r in rows] == [
            int(datetime(2024, 3, 1, tzinfo=UTC).timestamp())
        ]

    @pytest.mark.asyncio
    async def test_naive_time_leaves_previous_month_empty(
        self, tmp_path: Path, budapest_host_zone: None
    ) -> None:
        store = ShardedStore(tmp_path)
        async with FakeMeter([meter_reply(_VALUES)]) as meter:
            await poll_device(
                _device(meter.port), store=store, channels={0}, ts=datetime(2024, 3, 1, 0, 30)
            )

        rows = await store.read_range(
            "127.0.0.1",
            datetime(2024, 2, 1, tzinfo=UTC),
            datetime(2024, 2, 29, 23, 59, tzinfo=UTC),
        )
        assert rows == []
