"""Tutor streaming engine: completion chunks in, SSE events out.

One call to ``generate_tutor_stream`` serves one conversational turn. The
completion stream and the heartbeat timer both feed a single queue, so
heartbeats keep flowing while the model is silent and the turn deadline is
enforced in one place.
"""

import asyncio
import json
import logging
import time
import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

from tutor_stream.context.tutor_prompt import build_minimal_request, build_turn_request
from tutor_stream.core.channel import BackoffPolicy, ChannelState
from tutor_stream.core.chunk_buffer import ChunkBuffer, fingerprint
from tutor_stream.core.config import Settings
from tutor_stream.core.directive_parser import parse
from tutor_stream.core.errors import (
    ContextLengthExceededError,
    StreamTimeoutError,
    TransientCompletionError,
    TutorStreamError,
)
from tutor_stream.core.fallback_directives import fallback_for_turn
from tutor_stream.core.geometry import DEFAULT_BOUNDS
from tutor_stream.core.llm import CompletionClient, CompletionRequest, build_completion_client
from tutor_stream.core.logging import get_logger, log_with_context, turn_logger
from tutor_stream.core.schemas_directives import Directive, Navigate, PageBounds
from tutor_stream.core.schemas_tutor import (
    AssistantMessage,
    ChannelMode,
    ChatMessage,
    PageSnapshot,
    SingleShotResponse,
    StreamEventType,
    TurnState,
    TutorTurnRequest,
)
from tutor_stream.db.messages import ConversationStore

logger = get_logger(__name__)

ClientFactory = Callable[[Settings], CompletionClient]

# Queue item kinds
_CHUNK = "chunk"
_HEARTBEAT = "heartbeat"
_DONE = "done"
_FAILED = "failed"


@dataclass
class TutorStreamConfig:
    """Explicit inputs for one tutoring turn."""

    session_id: str
    messages: list[ChatMessage]
    snapshot: PageSnapshot
    settings: Settings
    page_bounds: PageBounds = DEFAULT_BOUNDS
    document_id: str | None = None
    user_id: str | None = None
    source: str = "request_body"
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)

    @classmethod
    def from_request(
        cls,
        request: TutorTurnRequest,
        settings: Settings,
        source: str = "request_body",
    ) -> "TutorStreamConfig":
        if "page_bounds" in request.model_fields_set:
            bounds = request.page_bounds
        else:
            bounds = PageBounds(width=settings.PAGE_WIDTH, height=settings.PAGE_HEIGHT)
        return cls(
            session_id=request.session_id or str(uuid.uuid4()),
            messages=request.messages,
            snapshot=PageSnapshot.from_request(
                request,
                max_current_chars=settings.MAX_CURRENT_PAGE_CHARS,
                max_neighbor_chars=settings.MAX_NEIGHBOR_PAGE_CHARS,
            ),
            settings=settings,
            page_bounds=bounds,
            document_id=request.document_id,
            user_id=request.user_id,
            source=source,
            backoff=BackoffPolicy(
                base_seconds=settings.RETRY_BACKOFF_BASE_SECONDS,
                cap_seconds=settings.RETRY_BACKOFF_CAP_SECONDS,
                max_attempts=settings.MAX_COMPLETION_RETRIES,
            ),
        )


def _sse_event(data: dict) -> str:
    """Format a dict as an SSE data line."""
    return f"data: {json.dumps(data)}\n\n"


def _directive_payload(directive: Directive) -> dict[str, Any]:
    return directive.model_dump(mode="json")


def _end_event(message: str, annotations: list[Directive]) -> str:
    return _sse_event(
        {
            "type": StreamEventType.END.value,
            "message": message,
            "annotations": [_directive_payload(d) for d in annotations],
        }
    )


async def _heartbeat(queue: asyncio.Queue, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        await queue.put((_HEARTBEAT, time.time()))


async def _produce(queue: asyncio.Queue, chunks: AsyncIterator[str]) -> None:
    """Copy a completion stream into the turn queue, then report how it ended."""
    try:
        async for text in chunks:
            await queue.put((_CHUNK, text))
    except Exception as e:
        await queue.put((_FAILED, e))
    else:
        await queue.put((_DONE, None))


async def _single_shot(
    client: CompletionClient, request: CompletionRequest, delay: float = 0.0
) -> AsyncIterator[str]:
    if delay > 0:
        await asyncio.sleep(delay)
    text = await client.complete(request)
    if text:
        yield text


def _persist(
    store: ConversationStore | None, config: TutorStreamConfig, message: AssistantMessage
) -> None:
    if store is None:
        return
    try:
        store.save_message(config.document_id, config.user_id, message)
    except Exception as e:
        logger.warning(f"Failed to persist assistant message for {config.session_id}: {e}")


def _diagnostic(config: TutorStreamConfig) -> dict[str, Any]:
    snapshot = config.snapshot
    return {
        "type": StreamEventType.DIAGNOSTIC.value,
        "source": config.source,
        "current_page": snapshot.current_page,
        "total_pages": snapshot.total_pages,
        "current_chars": len(snapshot.current),
        "previous_chars": len(snapshot.previous or ""),
        "next_chars": len(snapshot.next or ""),
        "page_hints": len(snapshot.page_hints),
        "messages": len(config.messages),
    }


async def generate_tutor_stream(
    config: TutorStreamConfig,
    client_factory: ClientFactory | None = None,
    store: ConversationStore | None = None,
) -> AsyncGenerator[str, None]:
    """Stream one tutoring turn as SSE events.

    Yields: connect → diagnostic → (content | directive | heartbeat)* → end.
    Failures add an ``error`` event and an apology ``content`` before ``end``.
    Closing the generator cancels the completion and heartbeat tasks.
    """
    settings = config.settings
    channel = ChannelState(mode=ChannelMode.STREAMING)
    buffer = ChunkBuffer(max_buffer_chars=settings.ROLLING_BUFFER_CHARS, bounds=config.page_bounds)
    session = buffer.open(config.session_id, config.snapshot.current_page, config.page_bounds)
    queue: asyncio.Queue = asyncio.Queue()
    tasks: list[asyncio.Task] = []
    forwarded: list[str] = []
    log = turn_logger(logger, config.session_id)

    def start(chunks: AsyncIterator[str]) -> None:
        tasks.append(asyncio.create_task(_produce(queue, chunks)))

    try:
        channel.activate()
        yield _sse_event(
            {
                "type": StreamEventType.CONNECT.value,
                "message": "Connected to tutor stream",
                "session_id": config.session_id,
            }
        )
        yield _sse_event(_diagnostic(config))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + settings.STREAM_TIMEOUT_SECONDS
        tasks.append(asyncio.create_task(_heartbeat(queue, settings.HEARTBEAT_INTERVAL_SECONDS)))

        try:
            client = (client_factory or build_completion_client)(settings)
            request = build_turn_request(
                config.messages,
                config.snapshot,
                settings,
                config.page_bounds.width,
                config.page_bounds.height,
            )
            channel.transition(TurnState.STREAMING)
            start(client.stream(request))

            context_retried = False
            transient_retries = 0
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise StreamTimeoutError(f"Turn exceeded {settings.STREAM_TIMEOUT_SECONDS}s")
                try:
                    kind, payload = await asyncio.wait_for(queue.get(), timeout=remaining)
                except asyncio.TimeoutError:
                    raise StreamTimeoutError(
                        f"Turn exceeded {settings.STREAM_TIMEOUT_SECONDS}s"
                    ) from None

                if kind == _HEARTBEAT:
                    channel.touch()
                    yield _sse_event({"type": StreamEventType.HEARTBEAT.value, "timestamp": payload})
                    continue

                if kind == _CHUNK:
                    channel.touch()
                    result = session.feed(payload)
                    if result.cleaned_chunk:
                        forwarded.append(result.cleaned_chunk)
                        yield _sse_event(
                            {"type": StreamEventType.CONTENT.value, "text": result.cleaned_chunk}
                        )
                    for directive in result.new_directives:
                        yield _sse_event(
                            {
                                "type": StreamEventType.DIRECTIVE.value,
                                "directive": _directive_payload(directive),
                            }
                        )
                    continue

                if kind == _DONE:
                    break

                if not isinstance(payload, TutorStreamError):
                    raise payload

                # Retrying after prose or directives reached the user would duplicate them.
                delivered = bool(forwarded or session.emitted)
                if isinstance(payload, ContextLengthExceededError) and not context_retried and not delivered:
                    context_retried = True
                    session.restart()
                    log.warning("Context length exceeded, retrying with minimized request")
                    start(client.stream(build_minimal_request(config.messages, settings)))
                    continue

                if (
                    isinstance(payload, TransientCompletionError)
                    and not delivered
                    and config.backoff.should_retry(transient_retries)
                ):
                    transient_retries += 1
                    delay = config.backoff.delay(transient_retries)
                    log.warning(
                        f"Transient completion fault (attempt {transient_retries}), "
                        f"single-shot retry in {delay:.1f}s: {payload}"
                    )
                    yield _sse_event(
                        {
                            "type": StreamEventType.ERROR.value,
                            "error": payload.label,
                            "details": "Retrying",
                            "recoverable": True,
                        }
                    )
                    session.restart()
                    start(_single_shot(client, request, delay))
                    continue

                raise payload

            channel.transition(TurnState.COMPLETING)
            tail = session.flush()
            if tail:
                forwarded.append(tail)
                yield _sse_event({"type": StreamEventType.CONTENT.value, "text": tail})

            annotations = list(session.emitted)
            reply = "".join(forwarded).strip()
            synthesized = fallback_for_turn(
                annotations, config.snapshot.current_page, reply, config.page_bounds
            )
            if synthesized is not None:
                annotations.append(synthesized)
                yield _sse_event(
                    {
                        "type": StreamEventType.DIRECTIVE.value,
                        "directive": _directive_payload(synthesized),
                    }
                )

            _persist(store, config, AssistantMessage(content=reply, annotations=annotations))
            log_with_context(
                log,
                logging.INFO,
                "Tutor turn complete",
                chunks=session.chunks_seen,
                directives=len(annotations),
                duplicates_dropped=session.duplicates_dropped,
                elapsed_seconds=round(time.monotonic() - session.turn_started_at, 3),
                fallback=synthesized is not None,
            )
            yield _end_event("Stream complete", annotations)

        except TutorStreamError as e:
            timed_out = isinstance(e, StreamTimeoutError)
            channel.transition(TurnState.TIMED_OUT if timed_out else TurnState.ERRORING)
            log.error(f"Tutor turn failed: {e.label}: {e}")
            yield _sse_event(
                {
                    "type": StreamEventType.ERROR.value,
                    "error": e.label,
                    "details": str(e),
                    "recoverable": e.recoverable,
                }
            )
            yield _sse_event({"type": StreamEventType.CONTENT.value, "text": e.apology})
            yield _end_event("Stream ended with error", list(session.emitted))

    except Exception as e:
        channel.transition(TurnState.ERRORING)
        log.error(f"Tutor stream error: {e}", exc_info=True)
        generic = TutorStreamError()
        yield _sse_event(
            {
                "type": StreamEventType.ERROR.value,
                "error": generic.label,
                "details": str(e),
                "recoverable": generic.recoverable,
            }
        )
        yield _sse_event({"type": StreamEventType.CONTENT.value, "text": generic.apology})
        yield _end_event("Stream ended with error", list(session.emitted))

    finally:
        for task in tasks:
            task.cancel()
        buffer.close(config.session_id)
        channel.close()


async def _complete_with_policy(
    client: CompletionClient, config: TutorStreamConfig, request: CompletionRequest
) -> str:
    """Single-shot completion with the same retry rules as the stream.

    Every attempt, and every backoff sleep, shares one turn deadline.
    """
    settings = config.settings
    loop = asyncio.get_running_loop()
    deadline = loop.time() + settings.STREAM_TIMEOUT_SECONDS
    timeout_error = StreamTimeoutError(f"Turn exceeded {settings.STREAM_TIMEOUT_SECONDS}s")
    context_retried = False
    attempts = 0
    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise timeout_error
        try:
            return await asyncio.wait_for(client.complete(request), timeout=remaining)
        except asyncio.TimeoutError:
            raise timeout_error from None
        except ContextLengthExceededError:
            if context_retried:
                raise
            context_retried = True
            request = build_minimal_request(config.messages, settings)
        except TransientCompletionError:
            if not config.backoff.should_retry(attempts):
                raise
            attempts += 1
            delay = config.backoff.delay(attempts)
            if delay >= deadline - loop.time():
                raise timeout_error from None
            await asyncio.sleep(delay)


def resolve_page_number(directives: list[Directive], total_pages: int) -> int | None:
    """Target page of the last navigation command, bounded to the document."""
    for directive in reversed(directives):
        if isinstance(directive, Navigate):
            return directive.clamp(total_pages)
    return None


async def run_single_shot(
    config: TutorStreamConfig,
    client_factory: ClientFactory | None = None,
    store: ConversationStore | None = None,
) -> SingleShotResponse:
    """Answer a turn with one blocking request (non-streaming mode)."""
    settings = config.settings
    snapshot = config.snapshot
    try:
        client = (client_factory or build_completion_client)(settings)
        request = build_turn_request(
            config.messages, snapshot, settings, config.page_bounds.width, config.page_bounds.height
        )
        text = await _complete_with_policy(client, config, request)
    except TutorStreamError as e:
        logger.error(f"Single-shot turn {config.session_id} failed: {e.label}: {e}")
        return SingleShotResponse(reply=e.apology, note=e.label)

    result = parse(text, snapshot.current_page, config.page_bounds)
    annotations: list[Directive] = []
    seen = set()
    for directive in result.directives:
        key = fingerprint(directive)
        if key not in seen:
            seen.add(key)
            annotations.append(directive)
    synthesized = fallback_for_turn(
        annotations, snapshot.current_page, result.residual_text, config.page_bounds
    )
    if synthesized is not None:
        annotations.append(synthesized)

    _persist(store, config, AssistantMessage(content=result.residual_text, annotations=annotations))
    logger.info(
        f"Single-shot turn {config.session_id}: {len(annotations)} directives, "
        f"fallback={synthesized is not None}"
    )
    return SingleShotResponse(
        reply=result.residual_text,
        annotations=annotations,
        page_number=resolve_page_number(annotations, snapshot.total_pages),
    )
