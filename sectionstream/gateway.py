from __future__ import annotations

import logging
import sys
import uuid
from typing import Any, AsyncGenerator

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse

from .config import Settings, get_settings
from .markers import format_instruction
from .models import ParseRequest, StreamParseRequest
from .oneshot import parse_complete
from .parsing import StreamingState, StreamParser
from .sse import format_sse

logger = logging.getLogger(__name__)

_SECTION_FIELDS = ("reasoning", "tools", "conclusion")


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def _state_delta(before: StreamingState, after: StreamingState) -> dict[str, Any]:
    delta: dict[str, Any] = {"phase": after.phase.value}
    for name in _SECTION_FIELDS:
        appended = getattr(after, name)[len(getattr(before, name)) :]
        if appended:
            delta[name] = appended
    return delta


def _finalize_options(settings: Settings) -> dict[str, Any]:
    return {
        "noise_threshold": settings.noise_threshold,
        "extract_attachments": settings.enable_attachments,
        "extract_data": settings.enable_data_blocks,
    }


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    _configure_logging(settings)
    app = FastAPI()

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok", "scope": "sectionstream"}

    @app.get("/v1/format-instruction")
    async def instruction():
        return {"instruction": format_instruction()}

    @app.post("/v1/parse")
    async def parse(req: ParseRequest):
        if len(req.text) > settings.max_text_chars:
            raise HTTPException(status_code=413, detail="Text too large")

        result = parse_complete(req.text, streaming=req.streaming, **_finalize_options(settings))
        return result.to_dict()

    @app.post("/v1/parse/stream")
    async def parse_stream(req: StreamParseRequest):
        if len(req.chunks) > settings.max_chunks:
            raise HTTPException(status_code=400, detail="Too many chunks")

        request_id = uuid.uuid4().hex
        logger.info(f"[Gateway] Replaying {len(req.chunks)} chunks, request_id={request_id}")

        async def event_stream() -> AsyncGenerator[str, None]:
            parser = StreamParser()
            try:
                for index, chunk in enumerate(req.chunks):
                    before = parser.state
                    after = parser.feed(chunk)
                    yield format_sse(
                        "state.delta",
                        {"index": index, **_state_delta(before, after), "request_id": request_id},
                    )
            except Exception as exc:
                logger.error(f"[Gateway] Stream replay failed: {exc}", exc_info=True)
                parser.fail(str(exc))
                yield format_sse(
                    "error",
                    {"message": str(exc), "stage": "process_chunk", "request_id": request_id},
                )

            result = parser.finalize(**_finalize_options(settings))
            yield format_sse("result.final", {**result.to_dict(), "request_id": request_id})
            yield format_sse("stream.done", {"request_id": request_id})

        return StreamingResponse(
            event_stream(), media_type="text/event-stream", headers={"Cache-Control": "no-cache"}
        )

    return app
