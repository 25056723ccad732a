"""Host and device resolution for a benchmark fleet."""

from .devices import resolve_device, resolve_devices, validate_device_map
from .hosts import HostSpec, ResolvedHost, build_fleet, read_host_file, resolve_hosts
from .patterns import expand_pattern, is_range_pattern

__all__ = [
    "HostSpec",
    "ResolvedHost",
    "build_fleet",
    "expand_pattern",
    "is_range_pattern",
    "read_host_file",
    "resolve_device",
    "resolve_devices",
    "resolve_hosts",
    "validate_device_map",
]
