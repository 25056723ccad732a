"""Per-host block device resolution.

``storage.devices`` maps a literal host name or a range pattern to a bare
device name (``vdb``, ``nvme0n1``). Every host must resolve to a device:
there is no default, since a wrong guess formats somebody's disk.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from ..errors import ConfigError, MissingDeviceError
from .patterns import expand_pattern, is_range_pattern


def validate_device_map(device_map: Mapping[str, str]) -> None:
    """Check device values and pattern keys before anything runs.

    Raises:
        ConfigError: For an empty device name or one carrying a path.
        PatternError: For a malformed range pattern key.
    """
    for key, device in device_map.items():
        if not isinstance(device, str) or not device.strip():
            raise ConfigError(f"storage.devices.{key}: device name must not be empty")
        if "/" in device:
            raise ConfigError(
                f"storage.devices.{key}: '{device}' must be a bare device name "
                f"without a path (use '{device.rsplit('/', 1)[-1]}', not '{device}')"
            )
        if is_range_pattern(key):
            expand_pattern(key)


def resolve_device(host: str, device_map: Mapping[str, str]) -> str:
    """Return the device configured for ``host``.

    An exact key wins. Otherwise pattern keys are expanded in declaration
    order and the first one containing ``host`` wins.

    Raises:
        MissingDeviceError: If no key matches the host.
    """
    if host in device_map:
        return device_map[host]

    for key, device in device_map.items():
        if is_range_pattern(key) and host in expand_pattern(key):
            return device

    raise MissingDeviceError(host)


def resolve_devices(hosts: Iterable[str], device_map: Mapping[str, str]) -> dict[str, str]:
    """Resolve every host, failing on the first host without a device."""
    return {host: resolve_device(host, device_map) for host in hosts}
