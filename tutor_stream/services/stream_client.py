"""Python consumer for the tutor SSE stream.

Opens ``POST /v1/tutor/stream`` and yields decoded events. A channel that
goes silent for more than two heartbeat intervals is torn down, and lost
channels are reopened with capped exponential backoff. After the last
automatic attempt ``ManualRetryRequiredError`` is raised.
"""

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import httpx

from tutor_stream.core.channel import BackoffPolicy, ChannelState
from tutor_stream.core.errors import ManualRetryRequiredError
from tutor_stream.core.logging import get_logger
from tutor_stream.core.schemas_tutor import ChannelMode, TurnState, TutorTurnRequest

logger = get_logger(__name__)

STREAM_PATH = "/v1/tutor/stream"
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class ChannelLostError(Exception):
    """The channel dropped, stalled, or ended without an ``end`` event."""


def decode_sse_line(line: str) -> dict[str, Any] | None:
    """Decode one ``data: {...}`` line; other SSE lines yield None."""
    if not line.startswith("data:"):
        return None
    data = line[len("data:") :].strip()
    if not data:
        return None
    try:
        return json.loads(data)
    except json.JSONDecodeError:
        logger.debug(f"Skipping undecodable SSE line: {data[:80]!r}")
        return None


class TutorStreamClient:
    """Reconnecting SSE consumer for tutoring turns."""

    def __init__(
        self,
        base_url: str,
        heartbeat_interval: float = 5.0,
        backoff: BackoffPolicy | None = None,
        connect_timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.heartbeat_interval = heartbeat_interval
        self.backoff = backoff or BackoffPolicy()
        self.connect_timeout = connect_timeout
        self.channel = ChannelState()
        self._transport = transport
        self._sleep = sleep

    async def stream_turn(self, request: TutorTurnRequest) -> AsyncIterator[dict[str, Any]]:
        """
        Yield every event of one turn, reconnecting when the channel is lost.

        Before a reconnect a ``{"type": "reconnect", "attempt", "delay"}``
        event is yielded; the turn restarts from scratch after it, so text
        shown for the failed attempt should be discarded.

        Raises:
            ManualRetryRequiredError: After the last automatic attempt fails
            httpx.HTTPStatusError: For non-retryable HTTP errors (e.g. 400)
        """
        payload = request.model_dump(mode="json")
        self.channel = ChannelState()
        while True:
            try:
                async for event in self._open(payload):
                    yield event
                return
            except ChannelLostError as e:
                attempt = self.channel.record_reconnect()
                if not self.backoff.should_retry(attempt - 1):
                    self.channel.close()
                    logger.warning(f"Giving up after {attempt - 1} reconnect attempts: {e}")
                    raise ManualRetryRequiredError(str(e)) from e
                delay = self.backoff.delay(attempt)
                logger.info(f"Channel lost ({e}); reconnect {attempt} in {delay:.1f}s")
                yield {"type": "reconnect", "attempt": attempt, "delay": delay}
                await self._sleep(delay)

    async def _open(self, payload: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
        timeout = httpx.Timeout(self.connect_timeout, read=None)
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=timeout, transport=self._transport
            ) as client:
                async with client.stream("POST", STREAM_PATH, json=payload) as response:
                    if response.status_code in RETRYABLE_STATUS_CODES:
                        raise ChannelLostError(f"HTTP {response.status_code}")
                    response.raise_for_status()

                    if response.headers.get("content-type", "").startswith("application/json"):
                        # Server chose non-streaming delivery for this turn.
                        body = json.loads(await response.aread())
                        self.channel.mode = ChannelMode.NON_STREAMING
                        self.channel.close()
                        yield {"type": "single_shot", **body}
                        return

                    self.channel.activate()
                    self.channel.transition(TurnState.STREAMING)
                    async for event in self._events(response):
                        yield event
                        if event.get("type") == "end":
                            self.channel.close()
                            return
        except httpx.TransportError as e:
            raise ChannelLostError(f"{type(e).__name__}: {e}") from e

        raise ChannelLostError("stream closed before end event")

    async def _events(self, response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
        lines = response.aiter_lines()
        while True:
            try:
                line = await asyncio.wait_for(
                    lines.__anext__(), timeout=self.channel.stale_timeout(self.heartbeat_interval)
                )
            except StopAsyncIteration:
                return
            except asyncio.TimeoutError:
                raise ChannelLostError(
                    f"no activity for {self.channel.idle_seconds():.1f}s"
                ) from None

            self.channel.touch()
            event = decode_sse_line(line)
            if event is not None:
                yield event
