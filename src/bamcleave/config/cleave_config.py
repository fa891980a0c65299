# cleave_config.py
from __future__ import annotations
import json
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union, IO

# Optional dependency for YAML handling
try:
    import yaml
except Exception:
    yaml = None

import pandas as pd

from ..constants import (
    DEFAULT_MAX_CELLS,
    DEFAULT_OPEN_FILE_RESERVE,
    DEFAULT_TAG_ID,
    PREFIX_TRAILING_SEPARATORS,
    SELECTION_SUFFIX,
)
from ..readwrite import strip_bam_suffix


# -------------------------
# Value coercion
# -------------------------
TRUE_WORDS = frozenset({"1", "true", "t", "yes", "y", "on"})
FALSE_WORDS = frozenset({"0", "false", "f", "no", "n", "off"})
STRING_HINTS = frozenset({"str", "string", "path"})


def _is_unset(text: str) -> bool:
    return text.strip() == "" or text.strip().lower() == "none"


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    word = str(value).strip().lower()
    if word in TRUE_WORDS:
        return True
    if word in FALSE_WORDS:
        return False
    raise ValueError(f"{name} must be a boolean; got {value!r}")


def _as_int(value: Any, name: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer; got {value!r}")
    if isinstance(value, int):
        return value
    text = str(value)
    if _is_unset(text):
        return None
    try:
        return int(text.strip())
    except ValueError as e:
        raise ValueError(f"{name} must be an integer; got {value!r}") from e


def _as_text(value: Any) -> Optional[str]:
    """String value or None; whitespace is kept, since stop characters and prefixes may be spaces."""
    if value is None:
        return None
    text = str(value)
    if text == "" or text.strip().lower() == "none":
        return None
    return text


def parse_cell_selection(value: Any) -> Tuple[Optional[int], Optional[str]]:
    """
    Interpret the ``-c`` style cell selection argument.

    An integer selects the top N cells; anything else is treated as the path of a
    bucket-list file.

    Returns
    -------
    (max_cells, cell_list_path)
    """
    if value is None:
        return None, None
    if isinstance(value, bool):
        raise ValueError("cell selection must be an integer or a file path")
    if isinstance(value, int):
        return value, None
    s = str(value).strip()
    if s == "":
        return None, None
    try:
        return int(s), None
    except ValueError:
        return None, s


class LoadCleaveConfig:
    """
    Load a run configuration CSV (or DataFrame / file-like) into a var_dict.

    CSV expected columns: 'variable', 'value', optional 'type' (``int``, ``bool``
    or ``str``/``path``). Untyped values become ints or booleans when they read as
    one and strings otherwise; a ``str`` type keeps the value exactly as written.

    Example
    -------
    loader = LoadCleaveConfig("cleave_config.csv")
    var_dict = loader.var_dict
    """

    def __init__(self, cleave_config: Union[str, Path, IO, pd.DataFrame]):
        self.source = cleave_config
        self.df = self._load_df(cleave_config)
        self.var_dict = self._parse_df(self.df)

    @staticmethod
    def _load_df(source: Union[str, Path, IO, pd.DataFrame]) -> pd.DataFrame:
        if isinstance(source, pd.DataFrame):
            df = source.copy()
        else:
            if isinstance(source, (str, Path)) and not Path(source).exists():
                raise FileNotFoundError(f"Config file not found: {source}")
            df = pd.read_csv(source, dtype=str, keep_default_na=False)
        df.columns = [str(c).strip() for c in df.columns]
        if "variable" not in df.columns:
            raise ValueError("Config CSV must contain a 'variable' column.")
        for column in ("value", "type"):
            if column not in df.columns:
                df[column] = ""
        return df.fillna("")

    @staticmethod
    def parse_value(raw: str, type_hint: str = "", name: str = "value") -> Any:
        """Typed value of one config cell; None for empty or ``none`` cells."""
        hint = str(type_hint).strip().lower()
        if hint in STRING_HINTS:
            return _as_text(raw)
        if _is_unset(raw):
            return None
        if hint in ("int", "integer"):
            return _as_int(raw, name)
        if hint in ("bool", "boolean"):
            return _as_bool(raw, name)
        if hint:
            raise ValueError(f"Unknown type '{type_hint}' for config variable '{name}'")
        text = raw.strip()
        try:
            return int(text)
        except ValueError:
            pass
        if text.lower() in TRUE_WORDS | FALSE_WORDS:
            return _as_bool(text, name)
        return text

    def _parse_df(self, df: pd.DataFrame) -> Dict[str, Any]:
        parsed: Dict[str, Any] = {}
        for idx, row in df.iterrows():
            name = str(row["variable"]).strip()
            if name == "":
                continue
            if name in parsed:
                raise ValueError(f"Config variable '{name}' is set twice (row {idx}).")
            parsed[name] = self.parse_value(str(row["value"]), row["type"], name)
        return parsed


@dataclass
class CleaveConfig:
    # General I/O
    input_bam: Optional[str] = None
    output_root: Optional[str] = None

    # Reference classification
    chromosome_map_path: Optional[str] = None
    prefix: Optional[str] = None

    # Per-cell bucketing
    cell_mode: bool = False
    max_cells: Optional[int] = None
    cell_list_path: Optional[str] = None
    group_file_path: Optional[str] = None
    tag_id: str = DEFAULT_TAG_ID
    name_stop_chars: Optional[str] = None
    materialize_groups: bool = True
    open_file_reserve: int = DEFAULT_OPEN_FILE_RESERVE

    # Post-processing
    index_outputs: bool = True
    samtools_backend: str = "auto"

    # Logging / provenance
    log_level: str = "INFO"
    log_file: Optional[str] = None
    command_line: Optional[str] = None

    config_source: Optional[str] = None


    # -------------------------
    # derived properties
    # -------------------------
    @property
    def all_reads(self) -> bool:
        """True when neither a prefix nor a chromosome map is configured."""
        return not (self.prefix or self.chromosome_map_path)

    @property
    def group_mode(self) -> bool:
        return self.group_file_path is not None

    @property
    def admission_mode(self) -> Optional[str]:
        """One of ``"group"``, ``"listed"``, ``"top_k"`` or None when not bucketing."""
        if not self.cell_mode:
            return None
        if self.group_mode:
            return "group"
        if self.cell_list_path:
            return "listed"
        return "top_k"

    @property
    def output_core(self) -> Path:
        """Root used for the rest file and the reports."""
        if self.output_root:
            return Path(self.output_root)
        if not self.input_bam:
            raise ValueError("input_bam is required to derive output names.")
        return strip_bam_suffix(self.input_bam)

    @property
    def selection_root(self) -> Path:
        """Root used for first-destination outputs (``_all``, per-cell and per-group files)."""
        core = str(self.output_core)
        if self.prefix:
            root = f"{core}_{self.prefix}"
            if root[-1] in PREFIX_TRAILING_SEPARATORS:
                root = root[:-1]
            return Path(root)
        return Path(core + SELECTION_SUFFIX)

    @property
    def effective_max_cells(self) -> int:
        return DEFAULT_MAX_CELLS if self.max_cells is None else int(self.max_cells)


    # -------------------------
    # construction
    # -------------------------
    @classmethod
    def from_var_dict(
        cls,
        var_dict: Optional[Dict[str, Any]],
        config_source: Optional[str] = None,
        **overrides,
    ) -> Tuple["CleaveConfig", Dict[str, Any]]:
        """
        Build a CleaveConfig from a loose variable dictionary.

        Unknown keys are reported rather than rejected. A ``cells`` entry is
        interpreted like the ``-c`` option: an integer is a top-N count, anything
        else a bucket-list file. Malformed values raise ValueError.

        Returns
        -------
        (config, report) where report lists ``unknown_keys`` and ``source``.
        """
        merged = {k: v for k, v in dict(var_dict or {}).items() if v is not None}
        merged.update(overrides)

        known = {f.name for f in fields(cls)}
        unknown = sorted(k for k in merged if k not in known and k != "cells")

        max_cells, cell_list_path = parse_cell_selection(merged.pop("cells", None))
        if max_cells is not None:
            merged.setdefault("max_cells", max_cells)
        if cell_list_path is not None:
            merged.setdefault("cell_list_path", cell_list_path)

        kwargs: Dict[str, Any] = {}
        for name in ("input_bam", "output_root", "chromosome_map_path", "prefix",
                     "cell_list_path", "group_file_path", "name_stop_chars",
                     "log_file", "command_line"):
            if name in merged:
                kwargs[name] = _as_text(merged[name])
        for name in ("cell_mode", "materialize_groups", "index_outputs"):
            if name in merged:
                kwargs[name] = _as_bool(merged[name], name)
        if "max_cells" in merged:
            kwargs["max_cells"] = _as_int(merged["max_cells"], "max_cells")
        if merged.get("open_file_reserve") is not None:
            kwargs["open_file_reserve"] = _as_int(merged["open_file_reserve"], "open_file_reserve")
        if merged.get("tag_id"):
            kwargs["tag_id"] = str(merged["tag_id"]).strip()
        if merged.get("samtools_backend"):
            kwargs["samtools_backend"] = str(merged["samtools_backend"]).strip().lower()
        if merged.get("log_level"):
            kwargs["log_level"] = str(merged["log_level"]).strip().upper()

        # a grouping table or a list of cells implies per-cell bucketing
        if kwargs.get("group_file_path") or kwargs.get("cell_list_path") or kwargs.get("max_cells") is not None:
            kwargs.setdefault("cell_mode", True)

        cfg = cls(config_source=config_source, **kwargs)
        return cfg, {"unknown_keys": unknown, "source": config_source}

    @classmethod
    def from_csv(
        cls,
        csv_input: Union[str, Path, IO, pd.DataFrame],
        **kwargs,
    ) -> Tuple["CleaveConfig", Dict[str, Any]]:
        """
        Load CSV using LoadCleaveConfig (or accept DataFrame) and build CleaveConfig.
        Additional kwargs are applied as overrides.
        """
        loader = LoadCleaveConfig(csv_input)
        source = str(csv_input) if isinstance(csv_input, (str, Path)) else None
        return cls.from_var_dict(loader.var_dict, config_source=source, **kwargs)

    # -------------------------
    # validation & serialization
    # -------------------------
    def validate(self, require_paths: bool = True, raise_on_error: bool = True) -> List[str]:
        """
        Validate the config. If require_paths True, check the input files exist.
        Returns a list of error messages (empty if none). Raises ValueError if raise_on_error True.
        """
        errors: List[str] = []
        if not self.input_bam:
            errors.append("input_bam is required but missing.")

        if self.cell_mode and self.input_bam == "-":
            errors.append("per-cell bucketing reads the input twice and cannot use a stream ('-').")
        if self.max_cells is not None and int(self.max_cells) < 0:
            errors.append(f"max_cells must be >= 0; got {self.max_cells}.")
        if not self.tag_id or len(self.tag_id) != 2:
            errors.append(f"tag_id must be a two-character SAM tag; got {self.tag_id!r}.")
        if self.name_stop_chars is not None and self.name_stop_chars == "":
            errors.append("name_stop_chars must not be empty when given.")
        if self.samtools_backend not in {"auto", "python", "cli"}:
            errors.append("samtools_backend must be one of: auto, python, cli")
        if int(self.open_file_reserve) < 0:
            errors.append("open_file_reserve must be >= 0.")

        if require_paths:
            for label, value in (
                ("input_bam", self.input_bam),
                ("chromosome_map_path", self.chromosome_map_path),
                ("group_file_path", self.group_file_path),
                ("cell_list_path", self.cell_list_path),
            ):
                if value and value != "-" and not Path(value).exists():
                    errors.append(f"{label} does not exist: {value}")

        if raise_on_error and errors:
            raise ValueError("CleaveConfig validation failed:\n  " + "\n  ".join(errors))
        return errors


    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_yaml(self, path: Optional[Union[str, Path]] = None) -> str:
        """
        Dump config to YAML (string if path None) or save to file at path.
        If pyyaml is not installed, fallback to JSON.
        """
        data = self.to_dict()
        if path is None:
            if yaml is None:
                return json.dumps(data, indent=2)
            return yaml.safe_dump(data, sort_keys=False)
        else:
            p = Path(path)
            if yaml is None:
                p.write_text(json.dumps(data, indent=2), encoding="utf8")
            else:
                p.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf8")
            return str(p)

    def save(self, path: Union[str, Path]) -> str:
        return self.to_yaml(path)

    def __repr__(self) -> str:
        return f"<CleaveConfig input_bam={self.input_bam} mode={self.admission_mode} source={self.config_source}>"
