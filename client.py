from __future__ import annotations

import argparse
import json
import random
import sys
from typing import Any

import httpx

from sectionstream.sse import iter_sse_events


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Replay a reply through the section parser")
    parser.add_argument("--url", default="http://localhost:8000/v1/parse/stream")
    parser.add_argument(
        "path",
        nargs="?",
        default="-",
        help="File holding the raw assistant reply ('-' reads stdin).",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=0,
        help="Fixed chunk size. 0 picks random sizes between 1 and --max-chunk.",
    )
    parser.add_argument(
        "--max-chunk",
        type=int,
        default=12,
        help="Largest random chunk size.",
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed for random chunking.")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Print the request payload before sending.",
    )
    return parser.parse_args()


def _read_text(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    with open(path, encoding="utf-8") as handle:
        return handle.read()


def _split_chunks(text: str, chunk_size: int, max_chunk: int, seed: int | None) -> list[str]:
    if chunk_size > 0:
        return [text[i : i + chunk_size] for i in range(0, len(text), chunk_size)]
    rng = random.Random(seed)
    chunks: list[str] = []
    i = 0
    while i < len(text):
        size = rng.randint(1, max(1, max_chunk))
        chunks.append(text[i : i + size])
        i += size
    return chunks


def _handle_event(event: str, data: dict[str, Any]) -> None:
    if event == "state.delta":
        for name in ("reasoning", "tools", "conclusion"):
            if name in data:
                sys.stdout.write(f"[{name}] {data[name]!r}\n")
    elif event == "result.final":
        print("\n=== Parsed result ===")
        if data.get("reasoning"):
            print("--- reasoning ---\n" + data["reasoning"])
        if data.get("tools"):
            print("--- tools ---\n" + "\n".join(f"- {tool}" for tool in data["tools"]))
        if data.get("normal_content"):
            print("--- content ---\n" + data["normal_content"])
        if data.get("files"):
            print(f"--- files --- {[f['name'] for f in data['files']]}")
    elif event == "stream.done":
        print("\n[done]")
    elif event == "error":
        print(f"\n[error] {data}")


def main() -> None:
    args = _parse_args()
    text = _read_text(args.path)
    payload = {"chunks": _split_chunks(text, args.chunk_size, args.max_chunk, args.seed)}
    if args.debug:
        print(f"[debug] url={args.url}")
        print(f"[debug] payload={json.dumps(payload, ensure_ascii=False)}")

    with httpx.Client(timeout=None) as client:
        with client.stream("POST", args.url, json=payload) as resp:
            if resp.status_code >= 400:
                resp.read()
                print(resp.text)
                raise SystemExit(1)

            for event, data in iter_sse_events(resp.iter_lines()):
                _handle_event(event, data)


if __name__ == "__main__":
    main()
