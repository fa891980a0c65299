"""Mate reconciliation across destinations and the per-destination read counts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, Mapping, Optional, Tuple

from bamcleave.constants import FIRST_DESTINATION, SECOND_DESTINATION, UNPLACED_REFERENCE
from bamcleave.logging_utils import get_logger

from .mapping_files import mapped_name
from .reference_remap import ReferenceRemapTable
from .reports import TsvReport

logger = get_logger(__name__)

DESTINATION_TITLES = {FIRST_DESTINATION: "First Genome", SECOND_DESTINATION: "Second Genome"}


@dataclass
class GenomeStats:
    mapped_pairs: int = 0
    single_mapped: int = 0
    chimeras: int = 0

    @property
    def total(self) -> int:
        return self.mapped_pairs + self.single_mapped + self.chimeras


@dataclass
class CleaveStatistics:
    genomes: Dict[int, GenomeStats] = field(
        default_factory=lambda: {FIRST_DESTINATION: GenomeStats(), SECOND_DESTINATION: GenomeStats()}
    )
    unmapped: int = 0

    def __getitem__(self, destination: int) -> GenomeStats:
        return self.genomes[destination]

    @property
    def records(self) -> int:
        return sum(g.total for g in self.genomes.values()) + self.unmapped

    @property
    def chimeras(self) -> int:
        return sum(g.chimeras for g in self.genomes.values())

    def titled_genomes(self) -> Iterator[Tuple[str, GenomeStats]]:
        for destination, genome in sorted(self.genomes.items()):
            yield DESTINATION_TITLES.get(destination, f"Genome {destination}"), genome


class ChimeraDetector:
    """
    Rewrites a record's reference and mate reference indices and counts it.

    A pair whose mates land in different destinations is a chimera: the record keeps
    only its own side, with the mate-unmapped flag set and the mate reference pointing
    at the record's own reference.
    """

    def __init__(
        self,
        table: ReferenceRemapTable,
        statistics: Optional[CleaveStatistics] = None,
        report: Optional[TsvReport] = None,
        chromosome_map: Optional[Mapping[str, str]] = None,
        count: bool = True,
    ):
        self.table = table
        self.statistics = statistics if statistics is not None else CleaveStatistics()
        self.report = report
        self.chromosome_map = chromosome_map
        self.count = count
        # unplaced reads without a placed mate
        self.default_destination = FIRST_DESTINATION if table.all_reads else SECOND_DESTINATION

    def destination_of(self, record) -> int:
        """Destination of ``record`` without modifying it."""
        if record.reference_id != UNPLACED_REFERENCE:
            return self.table.lookup(record.reference_id).destination
        if record.next_reference_id != UNPLACED_REFERENCE:
            return self.table.lookup(record.next_reference_id).destination
        return self.default_destination

    def classify(self, record) -> int:
        """
        Remap ``record`` in place and return its destination.

        Returns:
            1 or 2.
        """
        reference_id = record.reference_id
        mate_reference_id = record.next_reference_id
        mate_entry = None
        if mate_reference_id != UNPLACED_REFERENCE:
            mate_entry = self.table.lookup(mate_reference_id)

        if reference_id == UNPLACED_REFERENCE:
            if mate_entry is None:
                destination = self.default_destination
            else:
                destination = mate_entry.destination
                record.next_reference_id = mate_entry.new_index
            self._count(destination, record, chimera=False)
            return destination

        entry = self.table.lookup(reference_id)
        destination = entry.destination
        record.reference_id = entry.new_index

        chimera = False
        if mate_entry is not None:
            if mate_entry.destination == destination:
                record.next_reference_id = mate_entry.new_index
            else:
                chimera = True
                self._report(record, reference_id, mate_reference_id)
                record.mate_is_unmapped = True
                record.next_reference_id = entry.new_index

        self._count(destination, record, chimera)
        return destination

    def _report(self, record, reference_id: int, mate_reference_id: int) -> None:
        if self.report is None:
            return
        self.report.write_row(
            self.table.original_name(reference_id),
            record.reference_start,
            mapped_name(self.chromosome_map, self.table.original_name(mate_reference_id)),
            record.next_reference_start,
        )

    def _count(self, destination: int, record, chimera: bool) -> None:
        if not self.count:
            return
        genome = self.statistics[destination]
        if chimera:
            genome.chimeras += 1
        elif not record.is_unmapped:
            if record.is_paired and not record.mate_is_unmapped:
                genome.mapped_pairs += 1
            else:
                genome.single_mapped += 1
        else:
            self.statistics.unmapped += 1
