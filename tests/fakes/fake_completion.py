"""Scripted completion clients and stores for transport tests."""

import asyncio
from typing import Any, Dict, List

from tutor_stream.core.llm import CompletionRequest
from tutor_stream.core.schemas_tutor import AssistantMessage


class FakeCompletionClient:
    """
    Completion client that replays scripted outcomes.

    Each entry of ``streams`` / ``completions`` is consumed by one call, in
    order. A stream entry is a list of chunks (str), delays (float, seconds)
    and exceptions (raised when reached). A completion entry is a str, an
    exception, or a list of delays ending in either.
    """

    def __init__(self, streams: List[List[Any]] | None = None, completions: List[Any] | None = None):
        self.streams = list(streams or [])
        self.completions = list(completions or [])
        self.stream_requests: List[CompletionRequest] = []
        self.complete_requests: List[CompletionRequest] = []

    async def stream(self, request: CompletionRequest):
        self.stream_requests.append(request)
        script = self.streams.pop(0) if self.streams else []
        for step in script:
            if isinstance(step, BaseException):
                raise step
            if isinstance(step, (int, float)):
                await asyncio.sleep(step)
                continue
            yield step

    async def complete(self, request: CompletionRequest) -> str:
        self.complete_requests.append(request)
        outcome = self.completions.pop(0) if self.completions else ""
        if isinstance(outcome, list):
            *delays, outcome = outcome
            for delay in delays:
                await asyncio.sleep(delay)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class RecordingStore:
    """ConversationStore that keeps every saved message."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.saved: List[Dict[str, Any]] = []

    def save_message(self, document_id: str | None, user_id: str | None, message: AssistantMessage) -> None:
        if self.fail:
            raise RuntimeError("database unavailable")
        self.saved.append({"document_id": document_id, "user_id": user_id, "message": message})


def factory_for(client: FakeCompletionClient):
    """Client factory that ignores settings and returns ``client``."""
    return lambda settings: client
