"""
Independent extraction passes run over a message's text.

These sit outside the section state machine: attachments announced with
``<file ...>`` tags and tabular molecule records, either wrapped in a
``<molecule-data>`` block, a fenced CSV block, or a markdown table.
"""

from __future__ import annotations

import csv
import logging
import re

from .models import DataBlock, FileAttachment, FileType

logger = logging.getLogger(__name__)

FILE_PATTERN = re.compile(
    r'<file\s+name="([^"]+)"(?:\s+size="([^"]+)")?(?:\s+url="([^"]+)")?>([^<]*)</file>'
)
FILE_TAG_PATTERN = re.compile(r"<file\s+[^>]*>.*?</file>", re.DOTALL)
DATA_BLOCK_PATTERN = re.compile(
    r'<molecule-data(?:\s+description="([^"]*)")?>(.*?)</molecule-data>', re.DOTALL
)
DATA_TAG_PATTERN = re.compile(r"<molecule-data[^>]*>.*?</molecule-data>", re.DOTALL)
CSV_FENCE_PATTERN = re.compile(r"```(?:csv)?\s*\n(.*?)```", re.DOTALL)

NUMERIC_FIELDS = frozenset(
    {"similarity", "mw", "logp", "hbd", "hba", "tpsa", "rotatable_bonds", "molecular_weight"}
)
RECORD_HEADERS = ("smiles", "similarity", "mw", "molecular_weight", "logp")
FIELD_ALIASES = {"molecular_weight": "mw"}

_FILE_TYPES: dict[str, FileType] = {
    "duckdb": "duckdb",
    "db": "duckdb",
    "json": "json",
    "pdf": "pdf",
    "xlsx": "excel",
    "xls": "excel",
    "md": "md",
    "markdown": "md",
    "html": "html",
    "htm": "html",
    "csv": "csv",
}


def detect_file_type(filename: str) -> FileType:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return _FILE_TYPES.get(ext, "unknown")


def extract_files(text: str) -> list[FileAttachment]:
    files: list[FileAttachment] = []
    for match in FILE_PATTERN.finditer(text):
        name, size, url, content = match.groups()
        files.append(
            FileAttachment(
                name=name,
                type=detect_file_type(name),
                size=size or None,
                url=url or None,
                content=content.strip() or None,
            )
        )
    return files


def strip_attachment_tags(text: str) -> str:
    """Remove ``<file>`` tags and ``<molecule-data>`` blocks from display text."""
    text = FILE_TAG_PATTERN.sub("", text)
    return DATA_TAG_PATTERN.sub("", text)


def _to_number(value: str) -> float | None:
    try:
        return float(value)
    except ValueError:
        return None


def parse_csv_records(content: str) -> list[dict[str, str | float]]:
    lines = content.strip().split("\n")
    if len(lines) < 2:
        return []

    rows = list(csv.reader((line.strip() for line in lines), skipinitialspace=True))
    headers = [h.strip().lower() for h in rows[0]]
    records: list[dict[str, str | float]] = []

    for values in rows[1:]:
        if not any(v.strip() for v in values):
            continue
        record: dict[str, str | float] = {}
        for header, raw in zip(headers, values):
            value = raw.strip()
            if not value:
                continue
            if header in NUMERIC_FIELDS:
                number = _to_number(value)
                if number is not None:
                    record[FIELD_ALIASES.get(header, header)] = number
                    continue
            record[header] = value
        if record:
            records.append(record)

    return records


def parse_markdown_table(content: str) -> list[dict[str, str | float]]:
    table_lines = [line for line in content.strip().split("\n") if line.strip().startswith("|")]
    # header, separator, at least one row
    if len(table_lines) < 3:
        return []

    headers = [cell.strip().lower() for cell in table_lines[0].split("|") if cell.strip()]
    records: list[dict[str, str | float]] = []

    for line in table_lines[2:]:
        values = [cell.strip() for cell in line.split("|") if cell.strip()]
        record: dict[str, str | float] = {}
        for header, raw in zip(headers, values):
            value = raw.replace("`", "")
            if header in NUMERIC_FIELDS:
                number = _to_number(value.replace("%", ""))
                if number is not None:
                    key = FIELD_ALIASES.get(header, header)
                    record[key] = number / 100 if "%" in value else number
                    continue
            record[header] = value
        if record:
            records.append(record)

    return records


def detect_data_block(text: str) -> DataBlock | None:
    """Find the first recognizable block of molecule records in ``text``."""
    match = DATA_BLOCK_PATTERN.search(text)
    if match:
        description, body = match.group(1), match.group(2).strip()
        if body.startswith("|"):
            records = parse_markdown_table(body)
        else:
            records = parse_csv_records(body) or parse_markdown_table(body)
        if records:
            return DataBlock(records=records, description=description)
        logger.debug("[Extractors] <molecule-data> block held no parsable records")

    fence = CSV_FENCE_PATTERN.search(text)
    if fence:
        body = fence.group(1)
        first_line = body.split("\n", 1)[0].lower()
        if any(h in first_line for h in RECORD_HEADERS):
            records = parse_csv_records(body)
            if records:
                return DataBlock(records=records)

    lowered = text.lower()
    if "|" in text and ("smiles" in lowered or "similarity" in lowered):
        records = parse_markdown_table(text)
        if records:
            return DataBlock(records=records)

    return None
