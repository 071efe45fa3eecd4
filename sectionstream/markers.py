from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class Section(Enum):
    REASONING = "reasoning"
    TOOLS = "tools"
    CONCLUSION = "conclusion"

    @property
    def open_marker(self) -> str:
        return f"<{self.value}>"

    @property
    def close_marker(self) -> str:
        return f"</{self.value}>"


class MarkerKind(Enum):
    OPEN = "open"
    CLOSE = "close"


@dataclass(frozen=True)
class Marker:
    section: Section
    kind: MarkerKind

    @property
    def literal(self) -> str:
        if self.kind is MarkerKind.OPEN:
            return self.section.open_marker
        return self.section.close_marker


@dataclass(frozen=True)
class MarkerMatch:
    marker: Marker
    start: int
    length: int

    @property
    def end(self) -> int:
        return self.start + self.length


ALL_MARKERS: tuple[Marker, ...] = tuple(
    Marker(section, kind) for section in Section for kind in MarkerKind
)

_MARKER_PATTERNS: tuple[tuple[Marker, re.Pattern[str]], ...] = tuple(
    (marker, re.compile(re.escape(marker.literal))) for marker in ALL_MARKERS
)

_ANY_MARKER_PATTERN = re.compile(
    "|".join(re.escape(marker.literal) for marker in ALL_MARKERS)
)


def find_marker(buffer: str) -> MarkerMatch | None:
    """Return the earliest marker occurrence in ``buffer``.

    Ties on the start index go to the marker declared first, although no two
    literals can start at the same position.
    """
    best: MarkerMatch | None = None
    for marker, pattern in _MARKER_PATTERNS:
        match = pattern.search(buffer)
        if match is None:
            continue
        if best is None or match.start() < best.start:
            best = MarkerMatch(marker=marker, start=match.start(), length=len(match.group(0)))
    return best


def has_pending_marker_start(buffer: str) -> bool:
    """True when the buffer ends with what may become a marker.

    Only the tail beginning at the last ``<`` is considered: every literal
    contains a single ``<`` at its start, so a marker torn across chunks can
    only begin there.
    """
    last_lt = buffer.rfind("<")
    if last_lt == -1:
        return False
    tail = buffer[last_lt:]
    if ">" in tail:
        return False
    return any(
        marker.literal.startswith(tail) and len(tail) < len(marker.literal)
        for marker in ALL_MARKERS
    )


def strip_markers(text: str) -> str:
    """Remove every complete marker literal from ``text``."""
    return _ANY_MARKER_PATTERN.sub("", text)


def format_instruction() -> str:
    """Instruction text telling the model which markers to emit."""
    return (
        "Respond with your reasoning inside "
        f"{Section.REASONING.open_marker}...{Section.REASONING.close_marker}, "
        "list the tools and knowledge bases you used inside "
        f"{Section.TOOLS.open_marker}...{Section.TOOLS.close_marker} "
        "(one per line), and put the final answer inside "
        f"{Section.CONCLUSION.open_marker}...{Section.CONCLUSION.close_marker}. "
        "Do not write anything outside those sections."
    )
