from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Union

from bamcleave.constants import BAI_SUFFIX, PROGRAM_ID
from bamcleave.logging_utils import get_logger
from bamcleave.optional_imports import require

if TYPE_CHECKING:
    import pysam as pysam_types

try:
    import pysam
except Exception:
    pysam = None  # type: ignore

logger = get_logger(__name__)


class CleaveError(RuntimeError):
    """Fatal setup or I/O error that aborts a run."""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        super().__init__(message)
        self.path = None if path is None else Path(path)


def _require_pysam() -> "pysam_types":
    """Return the pysam module or raise if unavailable."""
    if pysam is not None:
        return pysam
    return require("pysam", purpose="BAM reading and writing")


def resolve_samtools_backend(backend: str | None) -> str:
    """Resolve backend choice for samtools-compatible operations.

    Args:
        backend: One of {"auto", "python", "cli"} (case-insensitive).

    Returns:
        Resolved backend string ("python" or "cli").
    """
    choice = (backend or "auto").strip().lower()
    if choice not in {"auto", "python", "cli"}:
        raise ValueError("samtools_backend must be one of: auto, python, cli")

    have_pysam = pysam is not None
    have_samtools = shutil.which("samtools") is not None

    if choice == "python":
        if not have_pysam:
            raise RuntimeError("samtools_backend=python requires pysam to be installed.")
        return "python"
    if choice == "cli":
        if not have_samtools:
            raise RuntimeError("samtools_backend=cli requires samtools in PATH.")
        return "cli"

    if have_samtools:
        return "cli"
    if have_pysam:
        return "python"
    raise RuntimeError("Neither pysam nor samtools is available in PATH.")


def _index_bam_with_pysam(bam_path: Union[str, Path]) -> None:
    """Index a BAM file using pysam."""
    bam_path = str(bam_path)
    logger.debug("Indexing BAM using pysam: %s", bam_path)
    pysam_mod = _require_pysam()
    pysam_mod.index(bam_path)


def _index_bam_with_samtools(bam_path: Union[str, Path]) -> None:
    """Index a BAM file using samtools."""
    if not shutil.which("samtools"):
        raise RuntimeError("samtools is required but not available in PATH.")
    cmd = ["samtools", "index", str(bam_path)]
    logger.debug("Indexing BAM using samtools: %s", " ".join(cmd))
    cp = subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, text=True)
    if cp.returncode != 0:
        raise RuntimeError(f"samtools index failed (exit {cp.returncode}):\n{cp.stderr}")


def index_bam(bam_path: Union[str, Path], samtools_backend: str | None = "auto") -> Path:
    """
    Build a ``.bai`` index next to a finished BAM file.

    Parameters:
        bam_path (str | Path): Closed, coordinate-sorted BAM.
        samtools_backend (str): "auto", "python" or "cli".

    Returns:
        Path of the index file.
    """
    backend_choice = resolve_samtools_backend(samtools_backend)
    if backend_choice == "python":
        _index_bam_with_pysam(bam_path)
    else:
        _index_bam_with_samtools(bam_path)
    return Path(str(bam_path) + BAI_SUFFIX)


def is_coordinate_sorted(header_dict: Dict[str, Any]) -> bool:
    """Return True when the ``@HD`` line declares ``SO:coordinate``."""
    hd = header_dict.get("HD") or {}
    return str(hd.get("SO", "")).lower() == "coordinate"


def program_record(command_line: Optional[str]) -> Dict[str, str]:
    """``@PG`` entry stamped onto every output header."""
    record = {"ID": PROGRAM_ID, "PN": PROGRAM_ID}
    if command_line:
        record["CL"] = command_line
    return record


def header_with_sequences(
    source_header: Dict[str, Any],
    sequences: List[Dict[str, Any]],
    pg_record: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """
    Copy a header dictionary, replacing its ``@SQ`` lines and appending a ``@PG`` line.

    A ``@PG`` ID already present in the source gets a numeric suffix so IDs stay unique.
    """
    header = {key: value for key, value in source_header.items() if key != "SQ"}
    header["SQ"] = [dict(sq) for sq in sequences]
    if pg_record is not None:
        programs = [dict(pg) for pg in source_header.get("PG", [])]
        taken = {pg.get("ID") for pg in programs}
        record = dict(pg_record)
        base_id = record["ID"]
        suffix = 1
        while record["ID"] in taken:
            record["ID"] = f"{base_id}.{suffix}"
            suffix += 1
        if programs and "PP" not in record:
            record["PP"] = programs[-1]["ID"]
        programs.append(record)
        header["PG"] = programs
    return header


class SourceReader:
    """
    Sequential reader over a BAM file that can start again from the first record.

    Rewinding closes and reopens the file by path, so the source must be a regular file.
    """

    def __init__(self, bam_path: Union[str, Path]):
        self.path = Path(bam_path)
        self._handle = None
        self.header_dict: Dict[str, Any] = {}
        self.references: List[str] = []
        self.lengths: List[int] = []
        self._open()

    def _open(self) -> None:
        pysam_mod = _require_pysam()
        try:
            self._handle = pysam_mod.AlignmentFile(str(self.path), "rb", check_sq=False)
        except (OSError, ValueError) as e:
            raise CleaveError(f"Failed to open source BAM {self.path}: {e}", self.path) from e
        self.header_dict = self._handle.header.to_dict()
        self.references = list(self._handle.references)
        self.lengths = list(self._handle.lengths)

    @property
    def sequences(self) -> List[Dict[str, Any]]:
        """``@SQ`` dictionaries in source order."""
        sq = self.header_dict.get("SQ")
        if sq:
            return [dict(entry) for entry in sq]
        return [{"SN": name, "LN": length} for name, length in zip(self.references, self.lengths)]

    def __iter__(self) -> Iterator["pysam_types.AlignedSegment"]:
        if self._handle is None:
            raise CleaveError(f"Source BAM {self.path} is closed", self.path)
        return iter(self._handle)

    def rewind(self) -> None:
        """Reposition at the first record."""
        logger.debug("Rewinding %s", self.path)
        self.close()
        self._open()

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "SourceReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False


def open_bam_writer(bam_path: Union[str, Path], header_dict: Dict[str, Any]):
    """Open a BAM for writing with the given header dictionary."""
    pysam_mod = _require_pysam()
    return pysam_mod.AlignmentFile(str(bam_path), "wb", header=header_dict)
