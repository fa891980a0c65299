"""Utilities for optional dependency handling."""

from __future__ import annotations

from importlib import import_module
from typing import Any


def require(package: str, *, extra: str | None = None, purpose: str | None = None) -> Any:
    """Import a dependency with a helpful error message.

    Args:
        package: Importable module name (e.g., "pysam", "yaml").
        extra: Extra name users should install, if the package ships in one.
        purpose: Optional context describing the feature needing the dependency.

    Returns:
        The imported module.

    Raises:
        ModuleNotFoundError: If the package is not installed.
    """
    try:
        return import_module(package)
    except ModuleNotFoundError as exc:  # pragma: no cover - depends on env
        reason = f" for {purpose}" if purpose else ""
        target = f"'bamcleave[{extra}]'" if extra else package
        message = f"Dependency '{package}' is required{reason}. Install it with: pip install {target}"
        raise ModuleNotFoundError(message) from exc
