"""Configuration management for fleet benchmark runs."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ConfigError, FleetbenchError
from .fleet.devices import validate_device_map
from .fleet.hosts import HostSpec
from .fleet.patterns import is_range_pattern


def _split_words(value: Any) -> Any:
    """Accept both ``"a b c"`` and ``[a, b, c]`` for list settings."""
    if value is None:
        return []
    if isinstance(value, str):
        return value.split()
    if isinstance(value, (int, float)):
        return [str(value)]
    if isinstance(value, list):
        return [str(item) for item in value if item is not None and str(item).strip()]
    return value


class VMConfig(BaseModel):
    """Which hosts to run on."""

    namespace: str = "default"
    hosts: list[str] = []
    host_pattern: str | None = None
    host_labels: str | None = None
    host_file: str | None = None

    @field_validator("hosts", mode="before")
    @classmethod
    def split_hosts(cls, v: Any) -> Any:
        return _split_words(v)

    @field_validator("host_pattern")
    @classmethod
    def validate_host_pattern(cls, v: str | None) -> str | None:
        """Host patterns must contain a {A..B} range group."""
        if v is not None and not is_range_pattern(v):
            raise ValueError(
                f"host_pattern '{v}' has no range group; use e.g. 'vm-{{1..10}}' "
                "or list the host under vm.hosts"
            )
        return v

    @field_validator("namespace")
    @classmethod
    def validate_namespace(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("namespace cannot be empty")
        return v.strip()


class StorageConfig(BaseModel):
    """Where benchmark data lives on every host."""

    mount_point: str = "/root/tests/data"
    filesystem: str = "xfs"
    devices: dict[str, str] = {}

    @field_validator("devices", mode="before")
    @classmethod
    def coerce_devices(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, dict):
            return {
                str(k).strip(): v[k].strip() if isinstance(v[k], str) else v[k] for k in v
            }
        return v

    @field_validator("devices")
    @classmethod
    def validate_devices(cls, v: dict[str, str]) -> dict[str, str]:
        """Devices are bare names and pattern keys must expand."""
        try:
            validate_device_map(v)
        except FleetbenchError as e:
            raise ValueError(str(e)) from e
        return v

    @field_validator("filesystem")
    @classmethod
    def validate_filesystem(cls, v: str) -> str:
        valid_filesystems = {"xfs", "ext4", "ext3", "btrfs"}
        if v not in valid_filesystems:
            raise ValueError(
                f"Unknown filesystem '{v}'. Supported: {', '.join(sorted(valid_filesystems))}"
            )
        return v

    @field_validator("mount_point")
    @classmethod
    def validate_mount_point(cls, v: str) -> str:
        if not v.startswith("/") or v.rstrip("/") == "":
            raise ValueError(f"mount_point must be an absolute path below / (got '{v}')")
        return v.rstrip("/")

    @property
    def mount_point_is_explicit(self) -> bool:
        return "mount_point" in self.model_fields_set


class FioConfig(BaseModel):
    """FIO job parameters shared by every cell of the test matrix."""

    test_size: str = "10G"
    runtime: int = 300
    block_sizes: list[str] = ["4k"]
    io_patterns: list[str] = ["randread", "randwrite"]
    numjobs: int = 1
    iodepth: int = 1
    direct_io: int = 1
    rate_iops: int | None = None

    @field_validator("block_sizes", "io_patterns", mode="before")
    @classmethod
    def split_lists(cls, v: Any) -> Any:
        return _split_words(v)

    @field_validator("block_sizes", "io_patterns")
    @classmethod
    def validate_not_empty(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("at least one value is required")
        return v

    @field_validator("io_patterns")
    @classmethod
    def validate_io_patterns(cls, v: list[str]) -> list[str]:
        valid_patterns = {
            "read",
            "write",
            "randread",
            "randwrite",
            "rw",
            "readwrite",
            "randrw",
            "trim",
            "randtrim",
            "trimwrite",
        }
        unknown = [p for p in v if p not in valid_patterns]
        if unknown:
            raise ValueError(
                f"Unknown io_patterns {unknown}. Supported: {', '.join(sorted(valid_patterns))}"
            )
        return v

    @field_validator("runtime", "numjobs", "iodepth")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be positive (got {v})")
        return v

    @field_validator("direct_io")
    @classmethod
    def validate_direct_io(cls, v: int) -> int:
        if v not in (0, 1):
            raise ValueError(f"direct_io must be 0 or 1 (got {v})")
        return v


class OutputConfig(BaseModel):
    """Remote result location and FIO output format."""

    directory: str = "/root/fio-results"
    format: str = "json+"

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        valid_formats = {"json", "json+", "normal", "terse"}
        if v not in valid_formats:
            raise ValueError(
                f"Unknown output format '{v}'. Supported: {', '.join(sorted(valid_formats))}"
            )
        return v


class ExecutionConfig(BaseModel):
    """Configuration for parallel execution."""

    max_workers: int | None = None  # Defaults to one worker per host
    command_timeout: float | None = None  # Seconds per remote command, None waits forever

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError(f"max_workers must be positive (got {v})")
        return v

    @field_validator("command_timeout")
    @classmethod
    def validate_command_timeout(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError(f"command_timeout must be positive (got {v})")
        return v


class HammerDBConfig(BaseModel):
    """Where the HammerDB wrapper scripts come from and go to."""

    repo: str = "https://github.com/ekuric/fusion-access.git"
    path: str = "/root/hammerdb-tpcc-wrapper-scripts"
    install_dir: str = "/usr/local/HammerDB"


class DatabaseConfig(BaseModel):
    """TPC-C schema size and run length."""

    warehouse_count: int = 50
    test_duration: int = 15  # minutes
    # Older configuration files put the host list here
    hosts: list[str] = []
    namespace: str | None = None

    @field_validator("hosts", mode="before")
    @classmethod
    def split_hosts(cls, v: Any) -> Any:
        return _split_words(v)

    @field_validator("warehouse_count", "test_duration")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be positive (got {v})")
        return v


class TpccRunConfig(BaseModel):
    """HammerDB run matrix."""

    user_count: list[int] = [10]
    run_name: str | None = None
    storage_type: str | None = None

    @field_validator("user_count", mode="before")
    @classmethod
    def split_user_count(cls, v: Any) -> Any:
        return _split_words(v)

    @field_validator("user_count")
    @classmethod
    def validate_user_count(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("at least one user count is required")
        if any(count < 1 for count in v):
            raise ValueError(f"user counts must be positive (got {v})")
        return v


class BenchConfig(BaseModel):
    """Main fleet benchmark configuration."""

    description: str | None = None
    vm: VMConfig = Field(default_factory=VMConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    fio: FioConfig = Field(default_factory=FioConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    hammerdb: HammerDBConfig = Field(default_factory=HammerDBConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    test: TpccRunConfig = Field(default_factory=TpccRunConfig)

    # Directory of the config file, used to resolve relative host files
    base_dir: str | None = None

    @model_validator(mode="after")
    def apply_legacy_database_hosts(self) -> "BenchConfig":
        """Use database.hosts/namespace when the vm section does not name hosts."""
        vm = self.vm
        if not (vm.hosts or vm.host_pattern or vm.host_labels or vm.host_file):
            if self.database.hosts:
                vm.hosts = list(self.database.hosts)
                if self.database.namespace and "namespace" not in vm.model_fields_set:
                    vm.namespace = self.database.namespace
        return self

    def host_spec(self) -> HostSpec:
        """Return the host selection methods with the host file made absolute."""
        host_file = None
        if self.vm.host_file:
            host_file = Path(self.vm.host_file).expanduser()
            if not host_file.is_absolute() and self.base_dir:
                host_file = Path(self.base_dir) / host_file
        return HostSpec(
            hosts=list(self.vm.hosts),
            host_pattern=self.vm.host_pattern,
            host_labels=self.vm.host_labels,
            host_file=host_file,
        )


def load_config(path: str | Path) -> BenchConfig:
    """Load and validate a fleet benchmark configuration from a YAML file.

    Raises:
        ConfigError: If the file is missing, not YAML, or fails validation.
    """
    config_path = Path(path)

    if not config_path.is_file():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Configuration file {config_path} is not valid YAML: {e}") from e

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigError(f"Configuration file {config_path} must contain a mapping")

    raw_config = _drop_nulls(_expand_env_vars(raw_config))
    raw_config["base_dir"] = str(config_path.resolve().parent)

    try:
        return BenchConfig(**raw_config)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}:\n{_format_errors(e)}") from e


def _format_errors(error: ValidationError) -> str:
    lines = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        message = item["msg"].removeprefix("Value error, ")
        lines.append(f"  {location}: {message}" if location else f"  {message}")
    return "\n".join(lines)


def _drop_nulls(obj: Any) -> Any:
    """Remove keys whose value is None or the string "null" so defaults apply."""
    if isinstance(obj, dict):
        return {
            k: _drop_nulls(v)
            for k, v in obj.items()
            if v is not None and not (isinstance(v, str) and v.strip() == "null")
        }
    elif isinstance(obj, list):
        return [_drop_nulls(item) for item in obj]
    else:
        return obj


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in configuration."""
    if isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return os.path.expandvars(obj)
    else:
        return obj
