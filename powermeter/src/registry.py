"""
Device and channel registry loaded from a JSON file.

The registry file has the shape::

    {
        "devices": [
            {"id": 1, "asset_name": "Main hall", "ip_address": "10.0.0.21",
             "port": 4001, "time_zone": "Europe/Budapest", "enabled": true}
        ],
        "channels": [
            {"id": 1, "power_meter_id": 1, "channel": 0,
             "channel_name": "Lighting", "enabled": true}
        ]
    }

Devices are looked up by their ``ip_address``, which is also the identifier
used for the shard directory of the device.

CHANGELOG:
- 2026-10-18: Initial creation (STORY-009)

TODO:
- None
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel

from powermeter.src.models import Channel, Device

logger = logging.getLogger(__name__)


class _RegistryFile(BaseModel):
    devices: list[Device] = []
    channels: list[Channel] = []


class DeviceRegistry:
    """In-memory view of the configured devices and their channels.

    Args:
        devices: Configured devices.
        channels: Configured channels of all devices.
    """

    def __init__(self, devices: list[Device], channels: list[Channel]) -> None:
        self._devices: dict[str, Device] = {d.ip_address: d for d in devices}
        self._channels = list(channels)

    @classmethod
    def from_file(cls, path: str | Path) -> DeviceRegistry:
        """Load and validate a registry JSON file.

        Raises:
            FileNotFoundError: If the file does not exist.
            pydantic.ValidationError: If the file content is malformed.
        """
        data = _RegistryFile.model_validate_json(Path(path).read_text(encoding="utf-8"))
        logger.info(
            "Loaded registry from %s: %d device(s), %d channel(s)",
            path,
            len(data.devices),
            len(data.channels),
        )
        return cls(data.devices, data.channels)

    def get(self, device_id: str) -> Device | None:
        """Return the device with the given identifier, if configured."""
        return self._devices.get(device_id)

    def enabled_devices(self) -> list[Device]:
        """Return every device that should be polled."""
        return [d for d in self._devices.values() if d.enabled]

    def enabled_channels(self, device_id: str) -> set[int]:
        """Return the channel numbers of a device that should be stored."""
        device = self._devices.get(device_id)
        if device is None:
            return set()
        return {
            c.channel
            for c in self._channels
            if c.power_meter_id == device.id and c.enabled
        }

    def timezone_for(self, device_id: str) -> str | None:
        """Return the device's configured zone, or None for the host's local zone."""
        device = self._devices.get(device_id)
        if device is None or not device.time_zone:
            return None
        return device.time_zone
