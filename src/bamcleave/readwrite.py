## readwrite ##
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Union

from .constants import BAM_SUFFIX

######################################################################################################
## General file and directory handling
def make_dirs(directories: Union[str, Path, Iterable[Union[str, Path]]]) -> None:
    """
    Create one or multiple directories.

    Parameters
    ----------
    directories : str | Path | list/iterable of str | Path
        Paths of directories to create.

    Returns
    -------
    None
    """

    # allow user to pass a single string/Path
    if isinstance(directories, (str, Path)):
        directories = [directories]

    for d in directories:
        Path(d).mkdir(parents=True, exist_ok=True)


def output_parent(path: Union[str, Path]) -> Path:
    """Make sure the directory holding an output file exists and return it."""
    parent = Path(path).parent
    make_dirs(parent)
    return parent


def strip_bam_suffix(path: Union[str, Path]) -> Path:
    """Return ``path`` without a trailing ``.bam`` (``sample.bam`` -> ``sample``)."""
    p = Path(path)
    return p.with_suffix("") if p.suffix == BAM_SUFFIX else p
######################################################################################################
