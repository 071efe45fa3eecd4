from __future__ import annotations

import json
from typing import Any, Iterable, Iterator


def format_sse(event: str, data: dict[str, Any]) -> str:
    payload = json.dumps(data, ensure_ascii=False)
    return f"event: {event}\ndata: {payload}\n\n"


def iter_sse_events(lines: Iterable[str]) -> Iterator[tuple[str, dict[str, Any]]]:
    """Decode ``(event, data)`` pairs from the lines of an SSE body."""
    event = None
    for line in lines:
        if not line:
            event = None
            continue
        if line.startswith("event:"):
            event = line[len("event:") :].strip()
        elif line.startswith("data:"):
            yield event or "message", json.loads(line[len("data:") :].strip())
