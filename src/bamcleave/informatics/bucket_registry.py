"""Per-cell bucket discovery and admission to output channels."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from bamcleave.constants import GROUP_FILE_PREFIX
from bamcleave.logging_utils import get_logger

from .mapping_files import GroupTable

logger = get_logger(__name__)

# Called with a channel label (bucket key or group label); returns the channel name.
ChannelOpener = Callable[[str], str]


class BucketState(Enum):
    DISCOVERED = "discovered"
    ADMITTED = "admitted"
    REJECTED = "rejected"


@dataclass
class Bucket:
    key: str
    count: int = 1
    saved: int = 0
    channel: Optional[str] = None
    label: Optional[str] = None
    state: BucketState = BucketState.DISCOVERED

    @property
    def admitted(self) -> bool:
        return self.state is BucketState.ADMITTED


def group_label(group_id: int) -> str:
    return f"{GROUP_FILE_PREFIX}{group_id}"


class BucketRegistry:
    """
    Tracks bucket keys seen during discovery and which of them own an output channel.

    Buckets move forward only: discovered, then admitted or rejected once the single
    admission step has run.
    """

    def __init__(self):
        self._buckets: Dict[str, Bucket] = {}
        self._selected = False
        self.exhausted_at: Optional[str] = None

    def __len__(self) -> int:
        return len(self._buckets)

    def __contains__(self, key: str) -> bool:
        return key in self._buckets

    def get(self, key: str) -> Optional[Bucket]:
        return self._buckets.get(key)

    @property
    def selected(self) -> bool:
        return self._selected

    def observe(self, key: str) -> Bucket:
        """Count one discovery-pass record for ``key``."""
        if self._selected:
            raise RuntimeError("Buckets cannot be observed after admission.")
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = Bucket(key)
            self._buckets[key] = bucket
        else:
            bucket.count += 1
        return bucket

    def ranked(self) -> List[Bucket]:
        """Buckets by discovery count, largest first; equal counts in key order."""
        return sorted(self._buckets.values(), key=lambda b: (-b.count, b.key))

    # -------------------------
    # admission
    # -------------------------
    def select_top_k(self, max_admitted: int, open_channel: ChannelOpener) -> List[Bucket]:
        """Admit the ``max_admitted`` most frequent buckets, each with its own channel."""
        candidates = [(b, b.key) for b in self.ranked()[: max(0, int(max_admitted))]]
        return self._admit(candidates, open_channel)

    def select_groups(self, group_table: GroupTable, open_channel: ChannelOpener) -> List[Bucket]:
        """
        Admit every bucket listed in ``group_table``.

        Buckets of the same group share the channel opened for the first of them.
        """
        candidates = []
        for bucket in self.ranked():
            group_id = group_table.group_of(bucket.key)
            if group_id is None:
                continue
            candidates.append((bucket, group_label(group_id)))
        return self._admit(candidates, open_channel)

    def select_listed(self, keys: Sequence[str], open_channel: ChannelOpener) -> List[Bucket]:
        """Admit the buckets named in ``keys``, in list order."""
        candidates = []
        missing = 0
        for key in keys:
            bucket = self._buckets.get(key)
            if bucket is None:
                missing += 1
                logger.debug("Listed cell %s was not seen in the input", key)
                continue
            candidates.append((bucket, key))
        if missing:
            logger.info("%d listed cells were not seen in the input", missing)
        return self._admit(candidates, open_channel)

    def _admit(
        self,
        candidates: Iterable[Tuple[Bucket, str]],
        open_channel: ChannelOpener,
    ) -> List[Bucket]:
        if self._selected:
            raise RuntimeError("Bucket admission has already run.")
        self._selected = True

        opened: Dict[str, str] = {}
        admitted: List[Bucket] = []
        for bucket, label in candidates:
            channel = opened.get(label)
            if channel is None:
                try:
                    channel = open_channel(label)
                except OSError as e:
                    self.exhausted_at = bucket.key
                    logger.warning(
                        "Unable to open more than %d files (%s); remaining cells go to the fallback output",
                        len(opened),
                        e,
                    )
                    break
                opened[label] = channel
            bucket.channel = channel
            bucket.label = label
            bucket.state = BucketState.ADMITTED
            admitted.append(bucket)
            if len(admitted) % 100 == 0:
                logger.debug("Admitted %d cells", len(admitted))

        for bucket in self._buckets.values():
            if bucket.state is BucketState.DISCOVERED:
                bucket.state = BucketState.REJECTED

        logger.info(
            "Admitted %d of %d cells into %d output files",
            len(admitted),
            len(self._buckets),
            len(opened),
        )
        return admitted

    # -------------------------
    # routing
    # -------------------------
    def channel_for(self, key: Optional[str]) -> Optional[str]:
        if not key:
            return None
        bucket = self._buckets.get(key)
        if bucket is None or not bucket.admitted:
            return None
        return bucket.channel

    def record_saved(self, key: str) -> None:
        self._buckets[key].saved += 1

    def admitted(self) -> List[Bucket]:
        return sorted((b for b in self._buckets.values() if b.admitted), key=lambda b: b.key)

    def not_admitted(self) -> List[Bucket]:
        return sorted((b for b in self._buckets.values() if not b.admitted), key=lambda b: b.key)
