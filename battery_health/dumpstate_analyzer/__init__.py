"""Battery health extraction from Android dumpstate reports."""
from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from . import archive, history, reconcile, renderer, rules, scanner, sections, settings, timestamps
from .reconcile import Reading
from .scanner import CancelToken, ProgressCallback

__all__ = [
    "archive",
    "history",
    "reconcile",
    "renderer",
    "rules",
    "scanner",
    "sections",
    "settings",
    "timestamps",
    "Reading",
    "analyze_stream",
    "analyze_file",
]


def analyze_stream(
    lines: Iterable[str],
    progress: ProgressCallback | None = None,
    cancel: CancelToken | None = None,
) -> Reading:
    """Scan ``lines`` and reconcile the result into a :class:`Reading`."""
    return reconcile.build_reading(scanner.scan_stream(lines, progress, cancel))


def analyze_file(
    path: Path,
    progress: ProgressCallback | None = None,
    cancel: CancelToken | None = None,
) -> Reading:
    """Convenience wrapper running :func:`analyze_stream` over a bugreport file."""
    return reconcile.build_reading(scanner.scan_file(path, progress, cancel))
