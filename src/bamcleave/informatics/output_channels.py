from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from bamcleave.logging_utils import get_logger

from .bam_functions import index_bam, is_coordinate_sorted, open_bam_writer

try:
    import resource
except ImportError:  # pragma: no cover - not available on Windows
    resource = None  # type: ignore

logger = get_logger(__name__)

WriterOpener = Callable[[Union[str, Path], Dict[str, Any]], Any]


@dataclass
class OutputChannel:
    name: str
    path: Path
    header: Dict[str, Any]
    handle: Any = None
    records: int = 0

    @property
    def closed(self) -> bool:
        return self.handle is None

    def write(self, record) -> None:
        if self.handle is None:
            raise RuntimeError(f"Output {self.path} is already closed")
        self.handle.write(record)
        self.records += 1

    def close(self) -> None:
        if self.handle is not None:
            self.handle.close()
            self.handle = None


class ChannelMultiplexer:
    """
    Owns every output BAM of a run: one fallback channel plus any number of bucket channels.

    Channels are keyed by their path. Closing happens once per channel; indexing only
    starts after a channel is closed.
    """

    def __init__(self, opener: WriterOpener = open_bam_writer, samtools_backend: str | None = "auto"):
        self._opener = opener
        self.samtools_backend = samtools_backend
        self._channels: Dict[str, OutputChannel] = {}
        self._fallback: Optional[OutputChannel] = None

    def __len__(self) -> int:
        return len(self._channels)

    def __contains__(self, name: str) -> bool:
        return name in self._channels

    def __getitem__(self, name: str) -> OutputChannel:
        return self._channels[name]

    @property
    def channels(self) -> List[OutputChannel]:
        return list(self._channels.values())

    @property
    def fallback(self) -> OutputChannel:
        if self._fallback is None:
            raise RuntimeError("No fallback output has been opened.")
        return self._fallback

    def open(self, path: Union[str, Path], header: Dict[str, Any]) -> OutputChannel:
        """Open (or return the already open) channel writing to ``path``."""
        name = str(path)
        channel = self._channels.get(name)
        if channel is not None:
            return channel
        handle = self._opener(path, header)
        channel = OutputChannel(name=name, path=Path(path), header=header, handle=handle)
        self._channels[name] = channel
        logger.debug("Opened output %s", name)
        return channel

    def open_fallback(self, path: Union[str, Path], header: Dict[str, Any]) -> OutputChannel:
        self._fallback = self.open(path, header)
        return self._fallback

    def write(self, name: Optional[str], record) -> OutputChannel:
        """Write ``record`` to channel ``name``, or to the fallback when ``name`` is None."""
        channel = self.fallback if name is None else self._channels[name]
        channel.write(record)
        return channel

    def record_counts(self) -> Dict[str, int]:
        return {name: channel.records for name, channel in self._channels.items()}

    def close_all(self, index: bool = True) -> List[Path]:
        """
        Close every channel, then index the closed files.

        Returns:
            Paths of the index files that were built.
        """
        for channel in self._channels.values():
            channel.close()
        if not index:
            return []

        indexed: List[Path] = []
        for channel in self._channels.values():
            if not is_coordinate_sorted(channel.header):
                logger.info("Not indexing %s: output is not coordinate sorted", channel.path)
                continue
            try:
                indexed.append(index_bam(channel.path, samtools_backend=self.samtools_backend))
            except Exception as e:
                logger.warning("Indexing failed for %s: %s", channel.path, e)
        return indexed

    def __enter__(self) -> "ChannelMultiplexer":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        # on error, release handles without indexing half-written files
        for channel in self._channels.values():
            channel.close()
        return False


def raise_open_file_limit(wanted: int, reserve: int = 10) -> Optional[int]:
    """
    Raise the soft open-file limit so ``wanted`` outputs can be open at once.

    Returns:
        The resulting soft limit, or None where the platform has no such limit.
    """
    if resource is None:
        return None
    soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    target = int(wanted) + int(reserve)
    if hard != resource.RLIM_INFINITY:
        target = min(target, hard)
    if soft != resource.RLIM_INFINITY and soft < target:
        try:
            resource.setrlimit(resource.RLIMIT_NOFILE, (target, hard))
        except (ValueError, OSError) as e:
            logger.warning("Could not raise the open file limit to %d: %s", target, e)
            return soft
        logger.debug("Raised open file limit from %d to %d", soft, target)
        return target
    return soft
