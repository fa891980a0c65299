from .cleave_config import CleaveConfig, LoadCleaveConfig, parse_cell_selection

__all__ = [
    "CleaveConfig",
    "LoadCleaveConfig",
    "parse_cell_selection",
]
