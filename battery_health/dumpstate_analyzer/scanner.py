"""Single-pass scanner for dumpstate/bugreport text."""
from __future__ import annotations

import logging
import re
from collections import deque
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from .archive import open_bugreport
from .rules import (
    BATTERY_CHANGED_ACTION,
    BATTERY_CHANGED_RE,
    FIELD_NAMES,
    GENERIC_TIMESTAMP_RE,
    RECOGNIZERS,
    UNSET,
    Recognizer,
    Slot,
    is_final,
    merge,
)
from .sections import SectionFilter

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".txt", ".log", ".zip"}

PROGRESS_INTERVAL = 10_000
PROGRESS_DONE = -1
MAX_SCAN_LEVEL_CHANGES = 50

ProgressCallback = Callable[[int], Any]


class CancelToken(Protocol):
    def is_set(self) -> bool: ...


@dataclass(frozen=True)
class BatteryLevelChange:
    timestamp: str
    level: int
    action: str = BATTERY_CHANGED_ACTION


@dataclass
class ExtractionState:
    """Mutable accumulator owned by one scan."""

    slots: dict[str, Slot] = field(default_factory=lambda: {name: UNSET for name in FIELD_NAMES})
    reliable_capacity: bool = False
    level_changes: deque[BatteryLevelChange] = field(
        default_factory=lambda: deque(maxlen=MAX_SCAN_LEVEL_CHANGES)
    )
    last_timestamp: str = ""
    line_count: int = 0
    cancelled: bool = False
    errors: list[str] = field(default_factory=list)

    def value(self, name: str) -> Any:
        return self.slots[name].value


def apply_line(
    state: ExtractionState,
    line: str,
    rules: Iterable[Recognizer] = RECOGNIZERS,
) -> None:
    """Run every recognizer against one line that survived section filtering."""
    timestamp_match = GENERIC_TIMESTAMP_RE.search(line)
    if timestamp_match:
        state.last_timestamp = timestamp_match.group(1)

    # Several rows share a pattern (the healthd line feeds three fields).
    matches: dict[re.Pattern[str], re.Match[str] | None] = {}
    for rule in rules:
        current = state.slots[rule.field]
        if is_final(rule.policy, current):
            continue
        if rule.requires_unreliable and state.reliable_capacity:
            continue
        if rule.hint is not None and rule.hint not in line:
            continue
        if rule.pattern in matches:
            match = matches[rule.pattern]
        else:
            match = rule.pattern.search(line)
            matches[rule.pattern] = match
        if match is None:
            continue
        candidate = rule.extract(match)
        if candidate is None:
            continue
        merged, accepted = merge(rule.policy, current, candidate)
        if not accepted:
            continue
        state.slots[rule.field] = merged
        if rule.marks_reliable and not state.reliable_capacity:
            logger.debug("Device-reported capacity found via %s", rule.name)
            state.reliable_capacity = True

    if "ACTION_BATTERY_CHANGED" in line:
        changed = BATTERY_CHANGED_RE.search(line)
        if changed and state.last_timestamp:
            state.level_changes.append(
                BatteryLevelChange(timestamp=state.last_timestamp.strip(), level=int(changed.group(1)))
            )


def _notify(progress: ProgressCallback | None, value: int) -> None:
    if progress is None:
        return
    try:
        progress(value)
    except Exception as exc:
        logger.warning("Progress callback failed at %d: %s", value, exc)


def scan_stream(
    lines: Iterable[str],
    progress: ProgressCallback | None = None,
    cancel: CancelToken | None = None,
    *,
    rules: Iterable[Recognizer] = RECOGNIZERS,
) -> ExtractionState:
    """Scan ``lines`` once and return the accumulated extraction state.

    ``progress`` receives the running line count every
    :data:`PROGRESS_INTERVAL` lines and :data:`PROGRESS_DONE` once at the end.
    ``cancel`` is polled before each line; once it reports set the scan stops
    and keeps what it has. Read or decode failures end the scan early and are
    recorded in ``errors``; nothing is raised to the caller.
    """
    rule_list = list(rules)
    state = ExtractionState()
    sections = SectionFilter()
    try:
        for raw_line in lines:
            if cancel is not None and cancel.is_set():
                state.cancelled = True
                state.errors.append(f"Scan cancelled after {state.line_count} lines")
                logger.info("Scan cancelled after %d lines", state.line_count)
                break
            state.line_count += 1
            if state.line_count % PROGRESS_INTERVAL == 0:
                _notify(progress, state.line_count)
            line = raw_line.rstrip("\r\n")
            if not sections.feed(line):
                continue
            apply_line(state, line, rule_list)
    except Exception as exc:
        logger.warning("Scan stopped after %d lines: %s", state.line_count, exc)
        state.errors.append(f"Error parsing file: {exc}")
    _notify(progress, PROGRESS_DONE)
    logger.debug(
        "Scanned %d lines, %d battery level events",
        state.line_count,
        len(state.level_changes),
    )
    return state


def scan_file(
    path: Path,
    progress: ProgressCallback | None = None,
    cancel: CancelToken | None = None,
) -> ExtractionState:
    """Scan a ``.txt``/``.log`` bugreport or the largest text entry of a ``.zip``."""
    try:
        with open_bugreport(path) as stream:
            return scan_stream(stream, progress, cancel)
    except Exception as exc:
        logger.error("Failed to read %s: %s", path, exc)
        state = ExtractionState()
        state.errors.append(f"Error reading file: {exc}")
        return state


def iter_bugreport_files(root: Path) -> Iterator[Path]:
    """Yield bugreports under ``root``, preferring ``x.txt`` over a sibling ``x.zip``."""
    candidates = [
        path
        for path in sorted(root.rglob("*"))
        if path.is_file() and path.suffix.lower() in SUPPORTED_EXTENSIONS
    ]
    text_stems = {
        (path.parent, path.stem.lower())
        for path in candidates
        if path.suffix.lower() == ".txt"
    }
    for path in candidates:
        if path.suffix.lower() == ".zip" and (path.parent, path.stem.lower()) in text_stems:
            logger.debug("Skipping %s, extracted text is present", path)
            continue
        yield path
