"""Translate source reference indices into (destination, new index) pairs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from bamcleave.constants import FIRST_DESTINATION, SECOND_DESTINATION, UNPLACED_REFERENCE
from bamcleave.logging_utils import get_logger

from .bam_functions import header_with_sequences

logger = get_logger(__name__)


@dataclass(frozen=True)
class RemapEntry:
    destination: int
    new_index: int


class ReferenceRemapTable:
    """
    Lookup table from an original reference index to its destination and new index.

    In all-reads mode no per-reference storage is kept: every reference stays in
    destination 1 under its own index.
    """

    def __init__(
        self,
        source_sequences: Sequence[Mapping[str, Any]],
        entries: Optional[Sequence[RemapEntry]] = None,
        destination_sequences: Optional[Dict[int, List[Dict[str, Any]]]] = None,
    ):
        self._source = tuple(dict(sq) for sq in source_sequences)
        self.all_reads = entries is None
        self._entries: Tuple[RemapEntry, ...] = () if entries is None else tuple(entries)
        if destination_sequences is None:
            destination_sequences = {
                FIRST_DESTINATION: [dict(sq) for sq in self._source],
                SECOND_DESTINATION: [dict(sq) for sq in self._source],
            }
        self._destination_sequences = destination_sequences
        # source indices of first-destination references, in new-index order
        self._first_sources: Tuple[int, ...] = tuple(
            i for i, entry in enumerate(self._entries) if entry.destination == FIRST_DESTINATION
        )

    def __len__(self) -> int:
        return len(self._source)

    def lookup(self, original_index: int) -> RemapEntry:
        if original_index == UNPLACED_REFERENCE:
            raise ValueError("Unplaced records (reference index -1) have no remap entry.")
        if not 0 <= original_index < len(self._source):
            raise IndexError(
                f"Reference index {original_index} out of range for {len(self._source)} references"
            )
        if self.all_reads:
            return RemapEntry(FIRST_DESTINATION, original_index)
        return self._entries[original_index]

    def original_name(self, original_index: int) -> str:
        return self._source[original_index]["SN"]

    def sequences_for(self, destination: int) -> List[Dict[str, Any]]:
        return [dict(sq) for sq in self._destination_sequences[destination]]

    def reference_names(self, destination: int) -> List[str]:
        return [sq["SN"] for sq in self._destination_sequences[destination]]

    def header_for(
        self,
        destination: int,
        source_header: Dict[str, Any],
        pg_record: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Output header for one destination: source header with that destination's ``@SQ`` lines."""
        return header_with_sequences(source_header, self.sequences_for(destination), pg_record)

    # -------------------------
    # shared fallback file
    # -------------------------
    def fallback_sequences(self) -> List[Dict[str, Any]]:
        """
        ``@SQ`` lines for a file holding records of both destinations.

        Second-destination references keep their indices; first-destination references
        follow them under their source names, so the names stay unique.
        """
        second = self.sequences_for(SECOND_DESTINATION)
        if self.all_reads:
            return second
        return second + [dict(self._source[i]) for i in self._first_sources]

    def fallback_header(
        self,
        source_header: Dict[str, Any],
        pg_record: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        return header_with_sequences(source_header, self.fallback_sequences(), pg_record)

    def fallback_index(self, destination: int, new_index: int) -> int:
        """Index in the fallback header of reference ``new_index`` of ``destination``."""
        if self.all_reads or destination == SECOND_DESTINATION or new_index == UNPLACED_REFERENCE:
            return new_index
        return len(self._destination_sequences[SECOND_DESTINATION]) + new_index

    def move_to_fallback(self, record) -> None:
        """Re-point a remapped first-destination record at the fallback header."""
        record.reference_id = self.fallback_index(FIRST_DESTINATION, record.reference_id)
        record.next_reference_id = self.fallback_index(FIRST_DESTINATION, record.next_reference_id)


def build_remap_table(
    source_sequences: Sequence[Mapping[str, Any]],
    prefix: Optional[str] = None,
    chromosome_map: Optional[Mapping[str, str]] = None,
) -> ReferenceRemapTable:
    """
    Classify every source reference into destination 1 or 2.

    Parameters:
        source_sequences: ``@SQ`` dictionaries (``SN``, ``LN``, ...) in source order.
        prefix: References whose name starts with this go to destination 1 with the prefix removed.
        chromosome_map: References named by a key go to destination 1 under the mapped name.

    Returns:
        ReferenceRemapTable. Without a prefix or a map the table is the identity.

    Prefix matching is tried before the chromosome map. New indices follow the order in which
    references are appended to their destination list, which is also the ``@SQ`` order of that
    destination's output header.
    """
    if not prefix and not chromosome_map:
        logger.debug("No reference filter configured; keeping all %d references", len(source_sequences))
        return ReferenceRemapTable(source_sequences)

    chromosome_map = chromosome_map or {}
    first: List[Dict[str, Any]] = []
    second: List[Dict[str, Any]] = []
    entries: List[RemapEntry] = []

    for sq in source_sequences:
        name = sq["SN"]
        if prefix and name.startswith(prefix):
            renamed = dict(sq, SN=name[len(prefix):])
            first.append(renamed)
            entries.append(RemapEntry(FIRST_DESTINATION, len(first) - 1))
        elif name in chromosome_map:
            renamed = dict(sq, SN=chromosome_map[name])
            first.append(renamed)
            entries.append(RemapEntry(FIRST_DESTINATION, len(first) - 1))
        else:
            second.append(dict(sq))
            entries.append(RemapEntry(SECOND_DESTINATION, len(second) - 1))

    logger.info(
        "Reference split: %d references to the first destination, %d to the second",
        len(first),
        len(second),
    )
    return ReferenceRemapTable(
        source_sequences,
        entries=entries,
        destination_sequences={FIRST_DESTINATION: first, SECOND_DESTINATION: second},
    )
