"""HammerDB TPC-C workloads for MariaDB and PostgreSQL.

Both engines follow the same shape: install packages, clone the HammerDB
wrapper scripts, install the database onto a device or a pre-mounted path,
build the TPC-C schema, then run once per configured user count.
"""

from __future__ import annotations

from ..common.enums import WorkloadKind
from ..errors import ConfigError
from ..run.fleet import Step
from .base import ResultSpec, Workload

ARCHIVE_NAME = "hammerdb-results.tar.gz"

# Seconds to wait after (re)starting the database before touching it
SERVICE_SETTLE_SECONDS = 15


class HammerDBWorkload(Workload):
    """Common phases of the HammerDB wrapper scripts."""

    engine: str = ""
    service: str = ""
    install_script: str = ""
    default_run_name: str = ""
    packages: tuple[str, ...] = ("git", "curl", "vim", "wget")

    @property
    def uses_mount_point(self) -> bool:
        """An explicitly configured mount point wins over raw devices."""
        return self.config.storage.mount_point_is_explicit

    @property
    def formats_devices(self) -> bool:
        return not self.uses_mount_point

    @property
    def run_name(self) -> str:
        return self.config.test.run_name or self.default_run_name

    def validate(self) -> None:
        """Either a mount point or per-host devices must be configured.

        Raises:
            ConfigError: If neither is set.
        """
        storage = self.config.storage
        if not storage.mount_point_is_explicit and not storage.devices:
            raise ConfigError(
                "Either storage.devices or storage.mount_point must be specified "
                f"for the {self.engine} workload"
            )

    def install_steps(self) -> list[Step]:
        return [
            self.step("Installing dependencies", "packages", packages=list(self.packages)),
            self.step("Preparing scripts directory", "hammerdb_prepare_dir"),
            self.step("Cloning HammerDB scripts", "hammerdb_clone"),
            self.step(
                "Setting execute permissions",
                "hammerdb_chmod",
                engine=self.engine,
                install_script=self.install_script,
            ),
        ]

    def storage_steps(self) -> list[Step]:
        target = "mount point" if self.uses_mount_point else "disk device"
        return [
            self.step(
                f"Installing {self.display_name()} with {target}",
                "hammerdb_install_db",
                engine=self.engine,
                install_script=self.install_script,
                use_mount_point=self.uses_mount_point,
            )
        ]

    def seed_steps(self) -> list[Step]:
        return [
            self.service_step("restart", settle_seconds=SERVICE_SETTLE_SECONDS),
            self.step("Cleaning existing database", "drop_database"),
            self.step("Configuring build script", "configure_build"),
            self.step("Building TPC-C database", "build"),
        ]

    def matrix(self) -> list[Step]:
        return [
            self.step(
                f"{user_count} virtual users",
                "run",
                user_count=user_count,
                run_name=self.run_name,
            )
            for user_count in self.config.test.user_count
        ]

    def teardown_steps(self) -> list[Step]:
        return [self.service_step("stop")]

    def service_step(self, action: str, settle_seconds: int = 0) -> Step:
        verb = "Restarting" if action == "restart" else "Stopping"
        return self.step(
            f"{verb} {self.display_name()}",
            "service",
            service=self.service,
            action=action,
            settle_seconds=settle_seconds,
        )

    def result_spec(self) -> ResultSpec:
        return ResultSpec(
            remote_dir=self.config.hammerdb.install_dir,
            patterns=("*.out",),
            archive_name=ARCHIVE_NAME,
        )

    def settings(self) -> list[tuple[str, str]]:
        cfg = self.config
        storage = (
            f"mount point {cfg.storage.mount_point}"
            if self.uses_mount_point
            else "per-host disk device (formatted by the install script)"
        )
        return [
            ("Storage", storage),
            ("Warehouse count", str(cfg.database.warehouse_count)),
            ("User counts", " ".join(str(c) for c in cfg.test.user_count)),
            ("Test duration", f"{cfg.database.test_duration} minutes"),
            ("HammerDB repo", cfg.hammerdb.repo),
            ("HammerDB path", cfg.hammerdb.path),
            ("HammerDB install dir", cfg.hammerdb.install_dir),
            ("Run name", self.run_name),
            ("Storage type", cfg.test.storage_type or "null"),
        ]


class MariaDBWorkload(HammerDBWorkload):
    """TPC-C against MariaDB."""

    kind = WorkloadKind.MARIADB
    results_prefix = "mariadb"
    engine = "mariadb"
    service = "mariadb"
    install_script = "Hammerdb-mariadb-install-script"
    default_run_name = "HDB_MDB"

    def display_name(self) -> str:
        return "MariaDB"


class PostgreSQLWorkload(HammerDBWorkload):
    """TPC-C against PostgreSQL; each run prints the achieved TPM."""

    kind = WorkloadKind.POSTGRESQL
    results_prefix = "postgresql"
    engine = "postgresql"
    service = "postgresql"
    install_script = "Hammerdb-postgres-install-script"
    default_run_name = "HDB_PG"
    prints_cell_output = True

    def display_name(self) -> str:
        return "PostgreSQL"
