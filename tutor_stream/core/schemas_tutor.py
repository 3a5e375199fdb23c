"""Pydantic schemas for tutoring turns."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from tutor_stream.core.schemas_directives import Directive, PageBounds

# ============================================================================
# Enums
# ============================================================================


class ChannelMode(str, Enum):
    """How a turn is delivered to the client."""
    STREAMING = "streaming"
    NON_STREAMING = "non_streaming"


class StreamEventType(str, Enum):
    """Event types on the outbound stream."""
    CONNECT = "connect"
    HEARTBEAT = "heartbeat"
    CONTENT = "content"
    DIRECTIVE = "directive"
    DIAGNOSTIC = "diagnostic"
    ERROR = "error"
    END = "end"


class TurnState(str, Enum):
    """Lifecycle of one streamed turn."""
    OPENING = "opening"
    STREAMING = "streaming"
    COMPLETING = "completing"
    ERRORING = "erroring"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


# ============================================================================
# Inbound
# ============================================================================


class ChatMessage(BaseModel):
    """A single chat message."""

    role: str  # 'user' or 'assistant'
    content: str = ""


class PageHint(BaseModel):
    """Candidate page the answer may live on (from client-side search)."""

    page: int = Field(ge=1)
    score: float = 0.0
    snippet: str = ""


class PageText(BaseModel):
    """Extracted text for the current page and its neighbors."""

    current: str = ""
    previous: str | None = None
    next: str | None = None


class ClientSignals(BaseModel):
    """Client-observed conditions used to pick the delivery mode up front."""

    recent_error_count: int = Field(default=0, ge=0)
    last_error_at: datetime | None = None
    battery_level: float | None = Field(default=None, ge=0, le=1)
    charging: bool | None = None
    save_data: bool = False
    effective_connection_type: str | None = None  # e.g. "4g", "2g", "slow-2g"
    heap_usage_ratio: float | None = Field(default=None, ge=0)


class TutorTurnRequest(BaseModel):
    """Request to run one tutoring turn."""

    messages: list[ChatMessage] = Field(min_length=1)
    page_text: PageText = Field(default_factory=PageText)
    current_page: int = Field(default=1, ge=1)
    total_pages: int = Field(default=1, ge=1)
    page_hints: list[PageHint] = Field(default_factory=list)
    page_bounds: PageBounds = Field(default_factory=PageBounds)
    session_id: str | None = None
    document_id: str | None = None
    user_id: str | None = None
    client_signals: ClientSignals | None = None


class PageSnapshot(BaseModel):
    """Immutable view of the document handed to a turn when it opens."""

    model_config = ConfigDict(frozen=True)

    current: str = ""
    previous: str | None = None
    next: str | None = None
    current_page: int = Field(default=1, ge=1)
    total_pages: int = Field(default=1, ge=1)
    page_hints: tuple[PageHint, ...] = ()

    @classmethod
    def from_request(
        cls,
        request: TutorTurnRequest,
        max_current_chars: int = 5000,
        max_neighbor_chars: int = 300,
        max_hints: int = 10,
    ) -> "PageSnapshot":
        """Cap each page's text independently and freeze the result."""
        text = request.page_text
        return cls(
            current=(text.current or "")[:max_current_chars],
            previous=text.previous[:max_neighbor_chars] if text.previous else None,
            next=text.next[:max_neighbor_chars] if text.next else None,
            current_page=request.current_page,
            total_pages=max(request.total_pages, request.current_page),
            page_hints=tuple(request.page_hints[:max_hints]),
        )


class ParseRequest(BaseModel):
    """Offline parse of a complete assistant reply."""

    text: str
    current_page: int = Field(default=1, ge=1)
    total_pages: int | None = Field(default=None, ge=1)
    page_bounds: PageBounds = Field(default_factory=PageBounds)


# ============================================================================
# Outbound
# ============================================================================


class AssistantMessage(BaseModel):
    """Final message handed to persistence at the end of a turn."""

    role: str = "assistant"
    content: str
    annotations: list[Directive] = Field(default_factory=list)


class SingleShotResponse(BaseModel):
    """Complete reply for non-streaming mode."""

    reply: str
    annotations: list[Directive] = Field(default_factory=list)
    page_number: int | None = None
    mode: ChannelMode = ChannelMode.NON_STREAMING
    note: str | None = None


class PrepareStreamResponse(BaseModel):
    """Handle for a prepared stream (GET-only clients)."""

    session_id: str
    stream_url: str


class ParseResponse(BaseModel):
    directives: list[Directive]
    residual_text: str
    page_number: int | None = None
