from __future__ import annotations

from dataclasses import dataclass
import os


def _get_env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    return value if value is not None else default


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value is not None else default


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class Settings:
    noise_threshold: int
    max_text_chars: int
    max_chunks: int
    enable_attachments: bool
    enable_data_blocks: bool
    log_level: str


def get_settings() -> Settings:
    return Settings(
        noise_threshold=_get_int("NOISE_THRESHOLD", 10),
        max_text_chars=_get_int("MAX_TEXT_CHARS", 200_000),
        max_chunks=_get_int("MAX_CHUNKS", 10_000),
        enable_attachments=_get_bool("ENABLE_ATTACHMENTS", True),
        enable_data_blocks=_get_bool("ENABLE_DATA_BLOCKS", True),
        log_level=(_get_env("LOG_LEVEL", "INFO") or "INFO").upper(),
    )
