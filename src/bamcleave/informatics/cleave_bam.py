"""Split a BAM by reference origin and, optionally, by cell barcode."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from tqdm import tqdm

from bamcleave.config import CleaveConfig
from bamcleave.constants import (
    ALL_SUFFIX,
    BAM_SUFFIX,
    CHIMERA_REPORT_SUFFIX,
    FIRST_DESTINATION,
    REST_SUFFIX,
    SECOND_DESTINATION,
    SPLIT_LOG_SUFFIX,
)
from bamcleave.logging_utils import get_logger
from bamcleave.readwrite import output_parent

from .bam_functions import CleaveError, SourceReader, open_bam_writer, program_record
from .bucket_registry import BucketRegistry
from .chimera_stats import ChimeraDetector, CleaveStatistics
from .mapping_files import GroupTable, load_bucket_list, load_chromosome_map, load_group_table
from .output_channels import ChannelMultiplexer, raise_open_file_limit
from .reference_remap import ReferenceRemapTable, build_remap_table
from .reports import TsvReport, open_chimera_report, write_cell_table, write_statistics

logger = get_logger(__name__)


class CleavePhase(Enum):
    SETUP = "setup"
    DISCOVERY = "discovery"
    ADMISSION = "admission"
    COMMIT = "commit"
    DONE = "done"


@dataclass
class CleaveResult:
    phase: CleavePhase
    statistics: CleaveStatistics
    registry: Optional[BucketRegistry]
    record_counts: Dict[str, int] = field(default_factory=dict)
    outputs: List[Path] = field(default_factory=list)
    indexed: List[Path] = field(default_factory=list)
    discovery_records: int = 0
    commit_records: int = 0
    split_log: Optional[Path] = None
    chimera_report: Optional[Path] = None


def extract_bucket_key(record, tag_id: str = "XC", name_stop_chars: Optional[str] = None) -> Optional[str]:
    """
    Cell key of a record, or None when it has none.

    With ``name_stop_chars`` the key is the read name up to the first of those characters
    (the whole name when none occurs); otherwise it is the string value of tag ``tag_id``.
    """
    if name_stop_chars:
        name = record.query_name or ""
        cut = len(name)
        for i, ch in enumerate(name):
            if ch in name_stop_chars:
                cut = i
                break
        return name[:cut] or None

    if not record.has_tag(tag_id):
        return None
    value = record.get_tag(tag_id)
    if not isinstance(value, str):
        return None
    return value or None


def _safe_label(label: str) -> str:
    return label.replace(os.sep, "_")


ReaderFactory = Callable[[Union[str, Path]], Any]


class CleaveRun:
    """
    One split of one input BAM.

    The run moves through SETUP, DISCOVERY (per-cell modes only), ADMISSION, COMMIT
    and DONE. Admission is the only transition between counting cells and writing
    records, and happens exactly once.
    """

    def __init__(
        self,
        cfg: CleaveConfig,
        opener=open_bam_writer,
        reader_factory: ReaderFactory = SourceReader,
    ):
        self.cfg = cfg
        self.phase = CleavePhase.SETUP
        self._opener = opener
        self._reader_factory = reader_factory

        self.source = None
        self.table: Optional[ReferenceRemapTable] = None
        self.chromosome_map: Dict[str, str] = {}
        self.group_table: Optional[GroupTable] = None
        self.cell_list: Optional[List[str]] = None
        self.registry: Optional[BucketRegistry] = BucketRegistry() if cfg.cell_mode else None
        self.statistics = CleaveStatistics()
        self.multiplexer = ChannelMultiplexer(opener, samtools_backend=cfg.samtools_backend)
        self.first_header: Dict[str, Any] = {}
        self.second_header: Dict[str, Any] = {}
        self.shared_fallback = False
        self.default_channel: Optional[str] = None
        self.split_log: Optional[TsvReport] = None
        self.chimera_report: Optional[TsvReport] = None
        self.discovery_records = 0
        self.commit_records = 0

    # -------------------------
    # phases
    # -------------------------
    def run(self) -> CleaveResult:
        try:
            self._setup()
            if self.cfg.cell_mode:
                self._advance(CleavePhase.DISCOVERY)
                self._discover()
                self.source.rewind()
            self._advance(CleavePhase.ADMISSION)
            self._admit()
            self._advance(CleavePhase.COMMIT)
            if self.cfg.group_mode and not self.cfg.materialize_groups:
                logger.info("Group mode without routing: leaving group files with headers only")
            else:
                self._commit()
            indexed = self._finish()
            self._advance(CleavePhase.DONE)
        except Exception:
            self._abort()
            raise

        return CleaveResult(
            phase=self.phase,
            statistics=self.statistics,
            registry=self.registry,
            record_counts=self.multiplexer.record_counts(),
            outputs=[channel.path for channel in self.multiplexer.channels],
            indexed=indexed,
            discovery_records=self.discovery_records,
            commit_records=self.commit_records,
            split_log=None if self.split_log is None else self.split_log.path,
            chimera_report=None if self.chimera_report is None else self.chimera_report.path,
        )

    def _advance(self, phase: CleavePhase) -> None:
        logger.debug("Phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase

    def _setup(self) -> None:
        cfg = self.cfg
        cfg.validate(require_paths=False)

        self.source = self._reader_factory(cfg.input_bam)

        try:
            if cfg.chromosome_map_path:
                self.chromosome_map = load_chromosome_map(cfg.chromosome_map_path)
            if cfg.group_mode:
                self.group_table = load_group_table(cfg.group_file_path)
            elif cfg.cell_list_path:
                self.cell_list = load_bucket_list(cfg.cell_list_path)
        except (OSError, ValueError) as e:
            raise CleaveError(f"Failed to load mapping file: {e}") from e

        self.table = build_remap_table(self.source.sequences, cfg.prefix, self.chromosome_map)
        pg = program_record(cfg.command_line)
        self.first_header = self.table.header_for(FIRST_DESTINATION, self.source.header_dict, pg)
        self.second_header = self.table.header_for(SECOND_DESTINATION, self.source.header_dict, pg)
        # first-destination reads without a cell file share the rest file
        self.shared_fallback = cfg.cell_mode and not self.table.all_reads
        if self.shared_fallback:
            fallback_header = self.table.fallback_header(self.source.header_dict, pg)
        else:
            fallback_header = self.second_header

        core = cfg.output_core
        output_parent(core)
        rest_path = Path(f"{core}{REST_SUFFIX}")
        try:
            self.multiplexer.open_fallback(rest_path, fallback_header)
        except (OSError, ValueError) as e:
            raise CleaveError(f"Failed to open second bam file {rest_path}: {e}", rest_path) from e

        if cfg.group_mode:
            return
        if not self.table.all_reads:
            self.chimera_report = open_chimera_report(Path(f"{core}{CHIMERA_REPORT_SUFFIX}"))
        self.split_log = TsvReport(Path(f"{core}{SPLIT_LOG_SUFFIX}"))

    def _discover(self) -> None:
        cfg = self.cfg
        detector = ChimeraDetector(self.table, count=False)
        skipped = 0
        for record in tqdm(self.source, desc="Discovery pass", unit=" reads"):
            self.discovery_records += 1
            if detector.destination_of(record) != FIRST_DESTINATION:
                continue
            key = extract_bucket_key(record, cfg.tag_id, cfg.name_stop_chars)
            if key is None:
                skipped += 1
                continue
            self.registry.observe(key)
        logger.info(
            "Discovery pass: %d reads, %d cells, %d first-genome reads without a cell key",
            self.discovery_records,
            len(self.registry),
            skipped,
        )

    def _admit(self) -> None:
        cfg = self.cfg
        root = cfg.selection_root

        if not cfg.cell_mode:
            path = Path(f"{root}{ALL_SUFFIX}")
            try:
                self.default_channel = self.multiplexer.open(path, self.first_header).name
            except (OSError, ValueError) as e:
                raise CleaveError(f"Failed to open first bam file {path}: {e}", path) from e
            return

        def open_channel(label: str) -> str:
            path = Path(f"{root}_{_safe_label(label)}{BAM_SUFFIX}")
            return self.multiplexer.open(path, self.first_header).name

        mode = cfg.admission_mode
        if mode == "group":
            raise_open_file_limit(len(self.group_table.group_ids) + 1, cfg.open_file_reserve)
            self.registry.select_groups(self.group_table, open_channel)
        elif mode == "listed":
            raise_open_file_limit(len(self.cell_list) + 1, cfg.open_file_reserve)
            self.registry.select_listed(self.cell_list, open_channel)
        else:
            raise_open_file_limit(cfg.effective_max_cells + 1, cfg.open_file_reserve)
            self.registry.select_top_k(cfg.effective_max_cells, open_channel)

    def _commit(self) -> None:
        cfg = self.cfg
        detector = ChimeraDetector(
            self.table,
            self.statistics,
            report=self.chimera_report,
            chromosome_map=self.chromosome_map,
            count=not cfg.group_mode,
        )
        for record in tqdm(self.source, desc="Commit pass", unit=" reads"):
            self.commit_records += 1
            destination = detector.classify(record)
            if destination != FIRST_DESTINATION:
                self.multiplexer.write(None, record)
                continue
            if not cfg.cell_mode:
                self.multiplexer.write(self.default_channel, record)
                continue
            key = extract_bucket_key(record, cfg.tag_id, cfg.name_stop_chars)
            channel = self.registry.channel_for(key)
            if channel is None:
                if self.shared_fallback:
                    self.table.move_to_fallback(record)
                self.multiplexer.write(None, record)
                continue
            self.multiplexer.write(channel, record)
            self.registry.record_saved(key)
        logger.info("Commit pass: %d reads, %d chimeras", self.commit_records, self.statistics.chimeras)

    def _finish(self) -> List[Path]:
        self.source.close()
        if self.chimera_report is not None:
            self.chimera_report.close()
        if self.split_log is not None:
            write_statistics(self.split_log, self.statistics)
            write_cell_table(self.split_log, self.registry)
            self.split_log.close()
        logger.info("Closing and indexing %d output files", len(self.multiplexer))
        return self.multiplexer.close_all(index=self.cfg.index_outputs)

    def _abort(self) -> None:
        if self.source is not None:
            self.source.close()
        for report in (self.chimera_report, self.split_log):
            if report is not None:
                report.close()
        for channel in self.multiplexer.channels:
            channel.close()


def cleave_bam(cfg: CleaveConfig, opener=open_bam_writer, reader_factory: ReaderFactory = SourceReader) -> CleaveResult:
    """
    Split ``cfg.input_bam`` into per-destination (and per-cell) BAM files.

    Parameters:
        cfg (CleaveConfig): Run configuration.
        opener: Callable opening an output BAM for a path and header dictionary.
        reader_factory: Callable opening the source BAM by path.

    Returns:
        CleaveResult with statistics, bucket registry and output paths.
    """
    logger.info("Splitting %s", cfg.input_bam)
    return CleaveRun(cfg, opener=opener, reader_factory=reader_factory).run()
