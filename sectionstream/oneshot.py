"""
One-shot decomposition of an already complete assistant message.

Used for persisted or historical messages where the full text is known.
Each section is taken from its first open-to-close span; a missing close
marker extends the span to the end of the text unless ``streaming`` is set,
in which case only closed spans count. Markers nested inside a span are
treated as noise and removed.
"""

from __future__ import annotations

import logging
import re

from .extractors import detect_data_block, extract_files, strip_attachment_tags
from .markers import Section, strip_markers
from .models import ParsedResult

logger = logging.getLogger(__name__)

NOISE_THRESHOLD_DEFAULT = 10

TOOLS_DELIMITER_PATTERN = re.compile(r"[\n,，、;；]+")
BULLET_PATTERN = re.compile(r"^[-•*·]\s*")
NOISE_CHARS_PATTERN = re.compile(r"[\s。，、；：？！.,:;?!]")

_CLOSED_SPAN_PATTERNS = {
    section: re.compile(
        f"{re.escape(section.open_marker)}(.*?){re.escape(section.close_marker)}",
        re.DOTALL,
    )
    for section in Section
}
_OPEN_SPAN_PATTERNS = {
    section: re.compile(
        f"{re.escape(section.open_marker)}(.*?)(?:{re.escape(section.close_marker)}|\\Z)",
        re.DOTALL,
    )
    for section in Section
}
_UNCLOSED_TAIL_PATTERNS = {
    section: re.compile(f"{re.escape(section.open_marker)}.*\\Z", re.DOTALL)
    for section in Section
}

_MAX_BLOCK_PASSES = 5


def split_tools(text: str) -> list[str]:
    """Split a tools section into entries, dropping bullets and blanks."""
    if not text.strip():
        return []
    entries = (BULLET_PATTERN.sub("", part).strip() for part in TOOLS_DELIMITER_PATTERN.split(text))
    return [entry for entry in entries if entry]


def is_noise(text: str, threshold: int = NOISE_THRESHOLD_DEFAULT) -> bool:
    """True when ``text`` has fewer than ``threshold`` substantive characters."""
    return len(NOISE_CHARS_PATTERN.sub("", text)) < threshold


def extract_section(text: str, section: Section, *, streaming: bool = False) -> str | None:
    patterns = _CLOSED_SPAN_PATTERNS if streaming else _OPEN_SPAN_PATTERNS
    match = patterns[section].search(text)
    if match is None:
        return None
    return strip_markers(match.group(1)).strip()


def remove_section_blocks(text: str, *, streaming: bool = False) -> str:
    """Return what is left of ``text`` outside every section."""
    for _ in range(_MAX_BLOCK_PASSES):
        before = len(text)
        for pattern in _CLOSED_SPAN_PATTERNS.values():
            text = pattern.sub("", text)
        if len(text) == before:
            break

    if not streaming:
        for pattern in _UNCLOSED_TAIL_PATTERNS.values():
            text = pattern.sub("", text)

    return strip_markers(text)


def parse_complete(
    text: str,
    *,
    streaming: bool = False,
    noise_threshold: int = NOISE_THRESHOLD_DEFAULT,
    extract_attachments: bool = True,
    extract_data: bool = True,
) -> ParsedResult:
    reasoning = extract_section(text, Section.REASONING, streaming=streaming)

    tools: list[str] | None = None
    tools_text = extract_section(text, Section.TOOLS, streaming=streaming)
    if tools_text is not None:
        tools = split_tools(tools_text)

    conclusion = extract_section(text, Section.CONCLUSION, streaming=streaming)

    files = extract_files(text) if extract_attachments else []
    data_block = detect_data_block(text) if extract_data else None

    normal_content = strip_attachment_tags(remove_section_blocks(text, streaming=streaming)).strip()

    has_structured = bool(reasoning or conclusion or tools)
    if has_structured and is_noise(normal_content, noise_threshold):
        if normal_content:
            logger.debug(
                f"[OneShotParser] Suppressed {len(normal_content)} chars of normal content as noise"
            )
        normal_content = ""

    return ParsedResult(
        normal_content=normal_content,
        reasoning=reasoning,
        tools=tools,
        conclusion=conclusion,
        files=files,
        data_block=data_block,
    )
