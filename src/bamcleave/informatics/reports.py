from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Union

from bamcleave.logging_utils import get_logger

from .bam_functions import CleaveError

if TYPE_CHECKING:
    from .bucket_registry import BucketRegistry
    from .chimera_stats import CleaveStatistics

logger = get_logger(__name__)

CHIMERA_REPORT_HEADER = ("First", "", "Second", "")


class TsvReport:
    """Line-oriented tab-separated text report."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        try:
            self._fh = self.path.open("w", encoding="utf-8")
        except OSError as e:
            raise CleaveError(f"Failed to open report file {self.path}: {e}", self.path) from e
        self.rows = 0

    def write_row(self, *values: Any) -> None:
        self._fh.write("\t".join("" if v is None else str(v) for v in values) + "\n")
        self.rows += 1

    def flush(self) -> None:
        self._fh.flush()

    @property
    def closed(self) -> bool:
        return self._fh.closed

    def close(self) -> None:
        if not self._fh.closed:
            self._fh.close()

    def __enter__(self) -> "TsvReport":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False


def open_chimera_report(path: Union[str, Path]) -> TsvReport:
    report = TsvReport(path)
    report.write_row(*CHIMERA_REPORT_HEADER)
    return report


def write_statistics(report: TsvReport, statistics: "CleaveStatistics") -> None:
    """Per-destination counts followed by the global unmapped count."""
    for title, genome in statistics.titled_genomes():
        report.write_row(title)
        report.write_row("Mapped pairs", genome.mapped_pairs)
        report.write_row("Singletons", genome.single_mapped)
        report.write_row("Chimeras", genome.chimeras)
        report.write_row()
    report.write_row()
    report.write_row("Unmapped reads", statistics.unmapped)


def write_cell_table(report: TsvReport, registry: Optional["BucketRegistry"]) -> None:
    """Discovery and saved counts per cell; cells with an output first."""
    report.write_row("Saved cell data")
    report.write_row("Cell", "Reads", "Saved")
    if registry is None:
        return
    for bucket in registry.admitted():
        report.write_row(bucket.key, bucket.count, bucket.saved)
    for bucket in registry.not_admitted():
        report.write_row(bucket.key, bucket.count, bucket.saved)
