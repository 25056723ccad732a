"""Error taxonomy for fleet orchestration.

Fatal errors (configuration, host resolution, device resolution, host
validation, missing client tools) are raised before any remote side effect
and stop the run. Per-host errors during execution phases are recovered into
result objects and only surface in the aggregated phase reports.
"""

from __future__ import annotations


class FleetbenchError(Exception):
    """Base class for all fleetbench errors."""


class ConfigError(FleetbenchError):
    """Configuration file missing, malformed or missing a required field."""


class PatternError(ConfigError):
    """A range pattern such as ``vm-{1..5}`` could not be parsed."""


class NoHostsError(FleetbenchError):
    """Host resolution produced an empty fleet."""


class MissingDeviceError(FleetbenchError):
    """A resolved host has no matching entry in ``storage.devices``."""

    def __init__(self, host: str, message: str | None = None):
        self.host = host
        super().__init__(
            message
            or (
                f"No storage device specified for host '{host}'. "
                f"Each host MUST have a device in storage.devices "
                f"(exact name or range pattern), e.g. storage.devices.{host}: \"sdb\". "
                "There is no fallback device."
            )
        )


class HostValidationError(FleetbenchError):
    """A host expected to be a managed VM does not exist."""


class DependencyError(FleetbenchError):
    """A client tool required for the selected connection mode is missing."""

    def __init__(self, missing: list[str], hints: dict[str, str] | None = None):
        self.missing = list(missing)
        self.hints = dict(hints or {})
        lines = ["The following required tools are missing:"]
        for tool in self.missing:
            hint = self.hints.get(tool)
            lines.append(f"  - {tool}: {hint}" if hint else f"  - {tool}")
        super().__init__("\n".join(lines))


class RemoteExecutionError(FleetbenchError):
    """A command failed on a single host."""

    def __init__(self, host: str, phase: str, detail: str = ""):
        self.host = host
        self.phase = phase
        self.detail = detail
        text = f"'{phase}' failed on {host}"
        super().__init__(f"{text}: {detail}" if detail else text)


class TransferError(FleetbenchError):
    """Result transfer failed on both the primary and the fallback path."""

    def __init__(self, host: str, remote_path: str, recovery_command: str):
        self.host = host
        self.remote_path = remote_path
        self.recovery_command = recovery_command
        super().__init__(
            f"Failed to copy results from {host} using both methods; "
            f"results are still available on {host} at {remote_path}"
        )


class UserDeclinedError(FleetbenchError):
    """The operator did not confirm a destructive action."""
