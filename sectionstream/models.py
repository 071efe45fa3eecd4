from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


FileType = Literal["duckdb", "json", "pdf", "excel", "md", "html", "csv", "unknown"]


@dataclass(frozen=True)
class FileAttachment:
    name: str
    type: FileType
    size: str | None = None
    url: str | None = None
    content: str | None = None


@dataclass(frozen=True)
class DataBlock:
    records: list[dict[str, str | float]]
    description: str | None = None


@dataclass(frozen=True)
class ParsedResult:
    """Decomposition of one assistant message into its sections.

    Produced both by the streaming finalizer and by the one-shot parser so
    renderers never need to know which path built it.
    """

    normal_content: str
    reasoning: str | None = None
    tools: list[str] | None = None
    conclusion: str | None = None
    files: list[FileAttachment] = field(default_factory=list)
    data_block: DataBlock | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ParseRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str
    streaming: bool = False


class StreamParseRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    chunks: list[str] = Field(default_factory=list)
