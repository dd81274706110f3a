"""Section tracking for dumpstate documents."""
from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

SECTION_HEADER_RE = re.compile(r"^-+\s*(.*?)\s*-+$")

# Log dumps that repeat battery-looking values from other processes.
IGNORED_SECTIONS = (
    "LAST KMSG",
    "LAST LOGCAT",
    "DLOG HISTORY",
    "SYSTEM LOG",
    "EVENT LOG",
    "RADIO LOG",
)


class SectionFilter:
    """Tracks the current ``------ NAME ------`` section of a single document.

    Create one filter per scan. ``feed`` must see every line, including the
    ones it reports as suppressed, so that the next header can end the
    suppression.
    """

    def __init__(self, ignored: tuple[str, ...] = IGNORED_SECTIONS) -> None:
        self.ignored = ignored
        self.current_section = ""
        self.suppressed = False

    def feed(self, line: str) -> bool:
        """Consume ``line`` and return ``True`` when recognizers may run on it."""
        stripped = line.strip()
        if stripped.startswith("---"):
            match = SECTION_HEADER_RE.match(stripped)
            if match:
                self.current_section = match.group(1) or ""
                suppressed = any(marker in self.current_section for marker in self.ignored)
                if suppressed != self.suppressed:
                    logger.debug(
                        "Section %r %s",
                        self.current_section,
                        "suppressed" if suppressed else "resumed",
                    )
                self.suppressed = suppressed
        return not self.suppressed
