from __future__ import annotations

import csv
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Union

import pandas as pd

from bamcleave.logging_utils import get_logger

logger = get_logger(__name__)


def load_chromosome_map(map_path: Union[str, Path]) -> Dict[str, str]:
    """
    Read a tab-separated chromosome name mapping.

    Parameters:
        map_path (str | Path): File with ``original_name<TAB>replacement_name`` lines.

    Returns:
        dict mapping original names to replacement names. Columns after the second are
        ignored, lines without a replacement are logged and skipped, and a repeated key
        keeps its first value.
    """
    map_path = Path(map_path)
    if not map_path.exists():
        raise FileNotFoundError(f"Chromosome map not found: {map_path}")
    with map_path.open() as fh:
        width = max((line.count("\t") + 1 for line in fh if line.strip()), default=0)
    if width == 0:
        logger.warning("Chromosome map %s is empty", map_path)
        return {}
    if width < 2:
        raise ValueError(f"Chromosome map {map_path} needs two tab-separated columns")

    # name every column so ragged lines parse; only the first two are kept
    df = pd.read_csv(
        map_path,
        sep="\t",
        header=None,
        names=list(range(width)),
        usecols=[0, 1],
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        quoting=csv.QUOTE_NONE,
    ).fillna("")

    mapping: Dict[str, str] = {}
    for original, replacement in zip(df[0], df[1]):
        original, replacement = original.strip(), replacement.strip()
        if not original or original in mapping:
            continue
        if not replacement:
            logger.warning("Skipping chromosome map entry %r in %s: no replacement name", original, map_path)
            continue
        mapping[original] = replacement
    logger.info("Loaded %d chromosome name mappings from %s", len(mapping), map_path)
    return mapping


def mapped_name(chromosome_map: Optional[Mapping[str, str]], name: str) -> str:
    """Human-readable name for ``name``; the name itself when it has no mapping."""
    if chromosome_map and name in chromosome_map:
        return chromosome_map[name]
    return name


class GroupTable(Mapping[str, int]):
    """Read-only mapping from a bucket key to its integer group id."""

    def __init__(self, groups: Optional[Mapping[str, int]] = None):
        self._groups: Dict[str, int] = dict(groups or {})

    def __getitem__(self, key: str) -> int:
        return self._groups[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._groups)

    def __len__(self) -> int:
        return len(self._groups)

    def group_of(self, key: str) -> Optional[int]:
        """Group id of ``key`` or None when the key is not listed."""
        return self._groups.get(key)

    @property
    def group_ids(self) -> List[int]:
        return sorted(set(self._groups.values()))


def parse_group_line(line: str) -> Optional[tuple]:
    """Split a ``KEY-groupNumber`` line at its last ``-``; None when malformed."""
    text = line.strip()
    if not text:
        return None
    key, sep, group = text.rpartition("-")
    key, group = key.strip(), group.strip()
    if not sep or not key or not group.isdigit():
        return None
    return key, int(group)


def load_group_table(group_path: Union[str, Path]) -> GroupTable:
    """
    Read the cell-to-group file.

    Parameters:
        group_path (str | Path): File of ``KEY-groupNumber`` lines.

    Returns:
        GroupTable. Blank lines are ignored, malformed lines are logged and skipped,
        and a repeated key keeps its last group.
    """
    group_path = Path(group_path)
    if not group_path.exists():
        raise FileNotFoundError(f"Group file not found: {group_path}")

    logger.info("Reading in the groups from %s", group_path)
    groups: Dict[str, int] = {}
    with group_path.open() as fh:
        for line_number, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            parsed = parse_group_line(line)
            if parsed is None:
                logger.warning("Skipping malformed group line %d in %s: %r", line_number, group_path, line.rstrip("\n"))
                continue
            key, group_id = parsed
            groups[key] = group_id

    table = GroupTable(groups)
    logger.info("Number of groups found: %d", len(table.group_ids))
    logger.info("Number of cells read: %d", len(table))
    return table


def load_bucket_list(list_path: Union[str, Path]) -> List[str]:
    """
    Read the keys of the buckets to keep, one per line.

    Blank lines and ``#`` comments are ignored; duplicates keep their first position.
    """
    list_path = Path(list_path)
    if not list_path.exists():
        raise FileNotFoundError(f"Cell list not found: {list_path}")
    keys: List[str] = []
    seen = set()
    with list_path.open() as fh:
        for line in fh:
            key = line.strip()
            if not key or key.startswith("#") or key in seen:
                continue
            seen.add(key)
            keys.append(key)
    logger.info("Loaded %d cells from %s", len(keys), list_path)
    return keys
