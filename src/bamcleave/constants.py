from __future__ import annotations

from typing import Final

## Constants ##
BAM_SUFFIX: Final[str] = ".bam"
BAI_SUFFIX: Final[str] = ".bai"

# Output naming
REST_SUFFIX: Final[str] = "_rest.bam"
ALL_SUFFIX: Final[str] = "_all.bam"
CHIMERA_REPORT_SUFFIX: Final[str] = "_chimeras.txt"
SPLIT_LOG_SUFFIX: Final[str] = "_split.log"
SELECTION_SUFFIX: Final[str] = "_sel"
GROUP_FILE_PREFIX: Final[str] = "group_"
PREFIX_TRAILING_SEPARATORS: Final[str] = "-_"

# Destinations
FIRST_DESTINATION: Final[int] = 1
SECOND_DESTINATION: Final[int] = 2
UNPLACED_REFERENCE: Final[int] = -1

# Defaults
DEFAULT_TAG_ID: Final[str] = "XC"
DEFAULT_MAX_CELLS: Final[int] = 1000
DEFAULT_OPEN_FILE_RESERVE: Final[int] = 10

PROGRAM_ID: Final[str] = "bamcleave"
