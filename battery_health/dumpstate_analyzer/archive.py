"""Opening bugreports stored as plain text or ZIP archives."""
from __future__ import annotations

import io
import logging
import zipfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TextIO

logger = logging.getLogger(__name__)

TEXT_ENTRY_SUFFIXES = (".txt", ".log")


def select_archive_entry(archive: zipfile.ZipFile) -> zipfile.ZipInfo | None:
    """Return the largest top-level ``.txt``/``.log`` entry by declared size."""
    best: zipfile.ZipInfo | None = None
    for info in archive.infolist():
        if info.is_dir() or "/" in info.filename:
            continue
        if not info.filename.lower().endswith(TEXT_ENTRY_SUFFIXES):
            continue
        if best is None or info.file_size > best.file_size:
            best = info
    return best


@contextmanager
def open_bugreport(path: str | Path) -> Iterator[TextIO]:
    """Yield a text stream over the bugreport at ``path``.

    ZIP archives are read through the entry picked by
    :func:`select_archive_entry`; anything else is opened as text.
    Undecodable bytes are dropped.
    """
    source = Path(path)
    if source.suffix.lower() != ".zip":
        with source.open("r", encoding="utf-8", errors="ignore") as fh:
            yield fh
        return
    with zipfile.ZipFile(source) as archive:
        entry = select_archive_entry(archive)
        if entry is None:
            raise ValueError(f"no .txt or .log entry in {source.name}")
        logger.info("Extracted %s from %s", entry.filename, source.name)
        with archive.open(entry) as raw:
            yield io.TextIOWrapper(raw, encoding="utf-8", errors="ignore")
