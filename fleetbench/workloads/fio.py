"""FIO storage benchmark across the fleet."""

from __future__ import annotations

from ..common.enums import WorkloadKind
from ..run.fleet import Step
from .base import ResultSpec, Workload

ARCHIVE_NAME = "fio-results.tar.gz"

# The seed job always lays out the file with 4k random writes for five minutes
SEED_BLOCK_SIZE = "4k"
SEED_RUNTIME = 300


class FioWorkload(Workload):
    """Format a device per host, lay out a test file and run a block size x pattern matrix.

    Every job uses ``--name=testfile`` so the matrix cells reuse the file
    written by the seed job.
    """

    kind = WorkloadKind.FIO
    results_prefix = "fio"

    @property
    def formats_devices(self) -> bool:
        return True

    @property
    def mkfs_force_flag(self) -> str:
        return "-F" if self.config.storage.filesystem.startswith("ext") else "-f"

    def install_steps(self) -> list[Step]:
        return [self.step("Installing FIO and filesystem tools", "install")]

    def storage_steps(self) -> list[Step]:
        return [
            self.step("Creating test directories", "storage_mkdir"),
            self.step("Validating test devices", "storage_validate"),
            self.step("Unmounting existing mounts", "storage_unmount"),
            self.step(
                "Formatting devices (destructive)",
                "storage_format",
                mkfs_force=self.mkfs_force_flag,
            ),
            self.step("Mounting devices", "storage_mount"),
        ]

    def seed_steps(self) -> list[Step]:
        return [
            self.step(
                "Writing test dataset",
                "job",
                rw="randwrite",
                bs=SEED_BLOCK_SIZE,
                runtime=SEED_RUNTIME,
                rate_iops=None,
                output_file="write_dataset.json",
            )
        ]

    def matrix(self) -> list[Step]:
        fio = self.config.fio
        cells = []
        for bs in fio.block_sizes:
            for pattern in fio.io_patterns:
                test_name = self.test_name(pattern, bs)
                cells.append(
                    self.step(
                        f"{pattern}, block size {bs}",
                        "job",
                        rw=pattern,
                        bs=bs,
                        runtime=fio.runtime,
                        rate_iops=fio.rate_iops,
                        output_file=f"{test_name}.json",
                    )
                )
        return cells

    def teardown_steps(self) -> list[Step]:
        return [
            self.step("Cleaning up storage mount points", "storage_release"),
            self.step("Stopping leftover FIO processes", "kill"),
            self.step("Removing remote JSON result files", "remove_results"),
        ]

    def result_spec(self) -> ResultSpec:
        return ResultSpec(
            remote_dir=self.config.output.directory,
            patterns=("*.json",),
            archive_name=ARCHIVE_NAME,
        )

    def settings(self) -> list[tuple[str, str]]:
        fio = self.config.fio
        storage = self.config.storage
        matrix_size = len(fio.block_sizes) * len(fio.io_patterns)
        return [
            ("Mount point", storage.mount_point),
            ("Filesystem", storage.filesystem),
            ("Test size", fio.test_size),
            ("Runtime", f"{fio.runtime}s"),
            ("Block sizes", " ".join(fio.block_sizes)),
            ("IO patterns", " ".join(fio.io_patterns)),
            ("Test matrix", f"{len(fio.block_sizes)} x {len(fio.io_patterns)} = {matrix_size} tests"),
            ("Jobs / IO depth", f"{fio.numjobs} / {fio.iodepth}"),
            ("Direct IO", str(fio.direct_io)),
            ("Rate limit", f"{fio.rate_iops} IOPS" if fio.rate_iops else "none"),
            ("Remote output", f"{self.config.output.directory} ({self.config.output.format})"),
        ]

    @staticmethod
    def test_name(pattern: str, block_size: str) -> str:
        return f"fio-test-{pattern}-bs-{block_size}"
