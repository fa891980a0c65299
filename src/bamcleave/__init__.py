"""bamcleave"""

from importlib.metadata import PackageNotFoundError, version

from . import config
from . import informatics as inform
from .config import CleaveConfig
from .informatics import cleave_bam

package_name = "bamcleave"
try:
    __version__ = version(package_name)
except PackageNotFoundError:  # pragma: no cover - running from a source checkout
    __version__ = "0.0.0"

__all__ = [
    "CleaveConfig",
    "cleave_bam",
    "config",
    "inform",
]
