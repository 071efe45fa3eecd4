"""
Incremental parser splitting a streamed reply into its sections.

The reply carries ``<reasoning>``, ``<tools>`` and ``<conclusion>`` markers
and arrives in arbitrary chunks. Text is buffered in ``pending`` only while
its tail could still grow into a marker; everything else is classified into
the section that is open at that point.

Anomalies are tolerated rather than rejected:
- a duplicate open of the current section is a no-op
- a close for a section that is not open is ignored
- an open while another section is open switches to the new section
- text after ``</conclusion>`` is appended to the conclusion
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum

from .extractors import detect_data_block, extract_files, strip_attachment_tags
from .markers import (
    ALL_MARKERS,
    Marker,
    MarkerKind,
    Section,
    find_marker,
    has_pending_marker_start,
    strip_markers,
)
from .models import ParsedResult
from .oneshot import NOISE_THRESHOLD_DEFAULT, is_noise, split_tools

logger = logging.getLogger(__name__)


class Phase(Enum):
    IDLE = "idle"
    REASONING = "reasoning"
    TOOLS = "tools"
    CONCLUSION = "conclusion"
    DONE = "done"
    ERROR = "error"

    @classmethod
    def in_section(cls, section: Section) -> "Phase":
        return cls(section.value)

    @property
    def section(self) -> Section | None:
        try:
            return Section(self.value)
        except ValueError:
            return None


def _next_phase(phase: Phase, marker: Marker) -> Phase:
    if phase is Phase.ERROR:
        return phase
    if marker.kind is MarkerKind.OPEN:
        return Phase.in_section(marker.section)
    if phase.section is marker.section:
        return Phase.DONE if marker.section is Section.CONCLUSION else Phase.IDLE
    return phase


TRANSITIONS: dict[tuple[Phase, Marker], Phase] = {
    (phase, marker): _next_phase(phase, marker) for phase in Phase for marker in ALL_MARKERS
}


def transition(phase: Phase, marker: Marker) -> Phase:
    return TRANSITIONS[(phase, marker)]


@dataclass(frozen=True)
class StreamingState:
    phase: Phase = Phase.IDLE
    prefix: str = ""
    reasoning: str = ""
    tools: str = ""
    conclusion: str = ""
    pending: str = ""
    error: str | None = None
    seen: frozenset[Section] = frozenset()

    @property
    def has_sections(self) -> bool:
        return bool(self.reasoning or self.tools or self.conclusion)


def create_state() -> StreamingState:
    return StreamingState()


def _append(state: StreamingState, text: str) -> StreamingState:
    if not text:
        return state
    phase = state.phase
    if phase is Phase.IDLE:
        return replace(state, prefix=state.prefix + text)
    if phase is Phase.REASONING:
        return replace(state, reasoning=state.reasoning + text)
    if phase is Phase.TOOLS:
        return replace(state, tools=state.tools + text)
    if phase in (Phase.CONCLUSION, Phase.DONE):
        return replace(state, conclusion=state.conclusion + text)
    return state


def _log_anomaly(phase: Phase, marker: Marker, new_phase: Phase) -> None:
    if marker.kind is MarkerKind.CLOSE and new_phase is phase:
        logger.debug(f"[StreamParser] Ignored stray {marker.literal} in phase={phase.value}")
    elif marker.kind is MarkerKind.OPEN and phase.section is marker.section:
        logger.debug(f"[StreamParser] Ignored duplicate {marker.literal}")
    elif marker.kind is MarkerKind.OPEN and phase.section is not None:
        logger.debug(
            f"[StreamParser] {marker.literal} while {phase.value} was open, switching sections"
        )
    elif phase is Phase.DONE:
        logger.debug(f"[StreamParser] Reopened {marker.section.value} after conclusion closed")


def process_chunk(state: StreamingState, chunk: str) -> StreamingState:
    """Feed one chunk and return the resulting state.

    ``state`` itself is left untouched.
    """
    if state.phase is Phase.ERROR:
        logger.debug(f"[StreamParser] Dropped {len(chunk)} chars after error")
        return state

    current = replace(state, pending=state.pending + chunk)

    while current.pending:
        match = find_marker(current.pending)

        if match is None:
            if has_pending_marker_start(current.pending):
                break
            current = replace(_append(current, current.pending), pending="")
            break

        before = current.pending[: match.start]
        after = current.pending[match.end :]
        current = _append(current, before)

        new_phase = transition(current.phase, match.marker)
        _log_anomaly(current.phase, match.marker, new_phase)
        if new_phase is not current.phase:
            logger.debug(
                f"[StreamParser] {match.marker.literal}: {current.phase.value} -> {new_phase.value}"
            )
        seen = current.seen
        if match.marker.kind is MarkerKind.OPEN:
            seen = seen | {match.marker.section}
        current = replace(current, phase=new_phase, pending=after, seen=seen)

    return current


def mark_error(state: StreamingState, message: str) -> StreamingState:
    """Put the stream into the terminal error phase."""
    logger.warning(f"[StreamParser] Stream marked as failed: {message}")
    return replace(state, phase=Phase.ERROR, error=message)


def finalize_state(state: StreamingState) -> StreamingState:
    """Flush ``pending`` and resolve the no-structure fallback."""
    current = state
    if current.pending:
        current = replace(_append(current, strip_markers(current.pending)), pending="")

    if current.prefix.strip() and not current.has_sections:
        # plain unstructured reply, show all of it
        current = replace(current, conclusion=current.prefix)

    if current.phase is Phase.ERROR:
        return current
    return replace(current, phase=Phase.DONE)


def _build_result(
    state: StreamingState,
    *,
    noise_threshold: int,
    extract_attachments: bool,
    extract_data: bool,
    suppress_noise: bool,
) -> ParsedResult:
    # a section is present once its open marker was consumed, even if empty
    reasoning = state.reasoning.strip() if Section.REASONING in state.seen else None
    tools = split_tools(state.tools) if Section.TOOLS in state.seen else None
    conclusion_text = state.conclusion.strip()
    conclusion = (
        conclusion_text if Section.CONCLUSION in state.seen or conclusion_text else None
    )

    files = extract_files(conclusion_text) if extract_attachments else []
    data_block = detect_data_block(conclusion_text) if extract_data else None
    normal_content = strip_attachment_tags(conclusion_text).strip()

    if suppress_noise and (reasoning or tools) and is_noise(normal_content, noise_threshold):
        normal_content = ""

    return ParsedResult(
        normal_content=normal_content,
        reasoning=reasoning,
        tools=tools,
        conclusion=conclusion,
        files=files,
        data_block=data_block,
        error=state.error,
    )


def finalize(
    state: StreamingState,
    *,
    noise_threshold: int = NOISE_THRESHOLD_DEFAULT,
    extract_attachments: bool = True,
    extract_data: bool = True,
) -> ParsedResult:
    """Close the stream and build its parsed result."""
    final = finalize_state(state)
    result = _build_result(
        final,
        noise_threshold=noise_threshold,
        extract_attachments=extract_attachments,
        extract_data=extract_data,
        suppress_noise=True,
    )
    logger.debug(
        f"[StreamParser] Finalized phase={final.phase.value} "
        f"reasoning={len(final.reasoning)} tools={len(final.tools)} "
        f"conclusion={len(final.conclusion)} prefix={len(final.prefix)}"
    )
    return result


def snapshot(state: StreamingState) -> ParsedResult:
    """Preview of an in-flight stream; ``pending`` is not included."""
    if state.prefix.strip() and not state.has_sections:
        state = replace(state, conclusion=state.prefix)
    return _build_result(
        state,
        noise_threshold=NOISE_THRESHOLD_DEFAULT,
        extract_attachments=False,
        extract_data=False,
        suppress_noise=False,
    )


class StreamParser:
    """Owns the streaming state of a single assistant turn."""

    def __init__(self) -> None:
        self._state = create_state()

    @property
    def state(self) -> StreamingState:
        return self._state

    def feed(self, chunk: str) -> StreamingState:
        self._state = process_chunk(self._state, chunk)
        return self._state

    def fail(self, message: str) -> StreamingState:
        self._state = mark_error(self._state, message)
        return self._state

    def finalize(self, **options) -> ParsedResult:
        result = finalize(self._state, **options)
        self._state = finalize_state(self._state)
        return result
