"""Tutor API endpoints."""

import uuid
from functools import lru_cache
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse

from tutor_stream.core.chat_stream import (
    TutorStreamConfig,
    generate_tutor_stream,
    resolve_page_number,
    run_single_shot,
)
from tutor_stream.core.config import get_settings
from tutor_stream.core.directive_parser import parse
from tutor_stream.core.logging import get_logger
from tutor_stream.core.payload_store import PayloadStore
from tutor_stream.core.rate_limiter import check_tutor_rate_limit, get_tutor_rate_limit_stats
from tutor_stream.core.schemas_tutor import (
    ChannelMode,
    ParseRequest,
    ParseResponse,
    PrepareStreamResponse,
    SingleShotResponse,
    TutorTurnRequest,
)
from tutor_stream.core.stream_mode import select_mode
from tutor_stream.db.messages import ConversationStore, get_conversation_store

logger = get_logger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


@lru_cache(maxsize=1)
def get_payload_store() -> PayloadStore[TutorTurnRequest]:
    return PayloadStore(ttl_seconds=get_settings().PAYLOAD_TTL_SECONDS)


def _conversation_store() -> ConversationStore | None:
    try:
        return get_conversation_store()
    except RuntimeError as e:
        logger.warning(f"Conversation store unavailable, replies will not be persisted: {e}")
        return None


def _stream_response(request: TutorTurnRequest, source: str) -> StreamingResponse:
    config = TutorStreamConfig.from_request(request, get_settings(), source=source)
    logger.info(
        f"Opening tutor stream {config.session_id}: page={config.snapshot.current_page}/"
        f"{config.snapshot.total_pages}, source={source}"
    )
    return StreamingResponse(
        generate_tutor_stream(config, store=_conversation_store()),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/stream", response_model=None)
async def stream_turn(request: TutorTurnRequest) -> StreamingResponse | SingleShotResponse:
    """
    Run one tutoring turn.

    Streams Server-Sent Events, unless the client's signals say a stream is
    likely to fail; then the reply is returned as a single JSON response.
    """
    check_tutor_rate_limit(request.user_id)

    if select_mode(request.client_signals) == ChannelMode.NON_STREAMING:
        config = TutorStreamConfig.from_request(request, get_settings(), source="request_body")
        return await run_single_shot(config, store=_conversation_store())

    return _stream_response(request, source="request_body")


@router.post("/stream/prepare", response_model=PrepareStreamResponse)
async def prepare_stream(request: TutorTurnRequest) -> PrepareStreamResponse:
    """
    Store a turn payload for clients that can only open a stream with GET.

    The payload expires after PAYLOAD_TTL_SECONDS and can be streamed once.
    """
    check_tutor_rate_limit(request.user_id)

    session_id = request.session_id or str(uuid.uuid4())
    get_payload_store().set(session_id, request.model_copy(update={"session_id": session_id}))
    return PrepareStreamResponse(session_id=session_id, stream_url=f"/v1/tutor/stream/{session_id}")


@router.get("/stream/{session_id}")
async def stream_prepared_turn(session_id: str) -> StreamingResponse:
    """Stream a turn prepared with ``POST /stream/prepare``."""
    request = get_payload_store().take(session_id)
    if request is None:
        raise HTTPException(status_code=404, detail="Prepared stream not found or expired")
    return _stream_response(request, source="prepared_payload")


@router.post("/complete", response_model=SingleShotResponse)
async def complete_turn(request: TutorTurnRequest) -> SingleShotResponse:
    """Run one tutoring turn as a single blocking request."""
    check_tutor_rate_limit(request.user_id)

    config = TutorStreamConfig.from_request(request, get_settings(), source="request_body")
    return await run_single_shot(config, store=_conversation_store())


@router.post("/parse", response_model=ParseResponse)
async def parse_reply(request: ParseRequest) -> ParseResponse:
    """Extract directives and residual prose from a complete reply."""
    result = parse(request.text, request.current_page, request.page_bounds)

    page_number = None
    if request.total_pages is not None:
        page_number = resolve_page_number(result.directives, request.total_pages)

    return ParseResponse(
        directives=result.directives,
        residual_text=result.residual_text,
        page_number=page_number,
    )


@router.get("/rate-limit-status")
async def get_rate_limit_status(
    user_id: str | None = Query(None, description="User id (anonymous when omitted)"),
) -> Dict[str, Any]:
    """Get rate limit status for tutoring turns."""
    return {"status": "ok", "rate_limit": get_tutor_rate_limit_stats(user_id)}
