"""Per-turn chunk buffering and directive deduplication.

Chunks from the completion service split text at arbitrary points, so a
command like ``[HIGHLIGHT 1 100 200 300 50]`` can arrive as ``"[HIGH"`` and
``"LIGHT 1 100 200 300 50]"``. Each turn gets a ``StreamSession`` that

- parses its whole rolling window after every chunk, so commands that began
  in an earlier chunk are recovered once they close;
- remembers a coarse fingerprint of everything it emitted, so a model that
  repeats itself does not produce the same directive twice;
- holds back display text that may still turn into a command, so the user
  never sees half a directive flash on screen.
"""

import time
from dataclasses import dataclass, field

from tutor_stream.core.directive_parser import (
    find_partial_directive,
    is_command_fragment,
    parse,
    strip_directives,
)
from tutor_stream.core.geometry import DEFAULT_BOUNDS
from tutor_stream.core.logging import get_logger
from tutor_stream.core.schemas_directives import Directive, PageBounds

logger = get_logger(__name__)

DEFAULT_BUFFER_CHARS = 3000

Fingerprint = tuple


def fingerprint(directive: Directive) -> Fingerprint:
    """Coarse identity: two directives at the same type/page/position are the same.

    Color, size and content are ignored on purpose; models often restate a
    command with cosmetic changes.
    """
    if directive.type == "navigate":
        return (directive.type, directive.target_page, None, None)
    return (directive.type, directive.page, directive.x, directive.y)


@dataclass
class FeedResult:
    """Outcome of feeding one chunk."""

    new_directives: list[Directive]
    cleaned_chunk: str


@dataclass
class StreamSession:
    """Parsing state for one conversational turn."""

    session_id: str
    current_page: int = 1
    page_bounds: PageBounds = DEFAULT_BOUNDS
    max_buffer_chars: int = DEFAULT_BUFFER_CHARS
    rolling_buffer: str = ""
    emitted_keys: set[Fingerprint] = field(default_factory=set)
    emitted: list[Directive] = field(default_factory=list)
    turn_started_at: float = field(default_factory=time.monotonic)
    chunks_seen: int = 0
    duplicates_dropped: int = 0
    _pending_display: str = ""
    _last_display_char: str = ""
    # True when the last displayed text ended where a command was cut out.
    _seam: bool = False

    def feed(self, chunk: str) -> FeedResult:
        """
        Append ``chunk`` and return directives completed by it.

        Args:
            chunk: Next raw increment from the completion service

        Returns:
            FeedResult with never-before-emitted directives (text order) and
            the chunk's displayable prose
        """
        self.chunks_seen += 1
        self.rolling_buffer += chunk
        if len(self.rolling_buffer) > self.max_buffer_chars:
            self.rolling_buffer = self.rolling_buffer[-self.max_buffer_chars :]

        result = parse(self.rolling_buffer, self.current_page, self.page_bounds)
        new_directives: list[Directive] = []
        for directive in result.directives:
            key = fingerprint(directive)
            if key in self.emitted_keys:
                self.duplicates_dropped += 1
                continue
            self.emitted_keys.add(key)
            self.emitted.append(directive)
            new_directives.append(directive)

        self._advance_cursor()
        return FeedResult(new_directives=new_directives, cleaned_chunk=self._display(chunk))

    def restart(self) -> None:
        """Drop parsing state from an abandoned completion attempt.

        Counters survive so the turn log still reflects every attempt.
        """
        self.rolling_buffer = ""
        self.emitted_keys = set()
        self.emitted = []
        self._pending_display = ""
        self._last_display_char = ""
        self._seam = False

    def flush(self) -> str:
        """Release display text still held at the end of the turn."""
        held, self._pending_display = self._pending_display, ""
        if not held:
            return ""
        if is_command_fragment(held):
            logger.debug(f"Dropping unterminated command at end of turn: {held[:80]!r}")
            return ""
        return strip_directives(held)

    def _advance_cursor(self) -> None:
        # Commands cannot contain "[" or "]", so only text after the last "]"
        # and from the last "[" onward can still complete a command.
        buffer = self.rolling_buffer
        last_close = buffer.rfind("]")
        if last_close != -1:
            buffer = buffer[last_close + 1 :]
        last_open = buffer.rfind("[")
        self.rolling_buffer = buffer[last_open:] if last_open != -1 else ""

    def _display(self, chunk: str) -> str:
        text = self._pending_display + chunk
        self._pending_display = ""
        start = find_partial_directive(text)
        # A command longer than the rolling window can never be parsed.
        if start != -1 and len(text) - start <= self.max_buffer_chars:
            self._pending_display = text[start:]
            text = text[:start]

        cleaned = strip_directives(text)
        # A command cut at a chunk edge leaves the spaces on both sides of it.
        starts_cut = text.startswith("[") and not cleaned.startswith("[")
        if (
            (self._seam or starts_cut)
            and self._last_display_char in (" ", "\t")
            and cleaned[:1] in (" ", "\t")
        ):
            cleaned = cleaned.lstrip(" \t")

        ends_cut = text.endswith("]") and not cleaned.endswith("]")
        if cleaned:
            self._last_display_char = cleaned[-1]
        self._seam = ends_cut or (self._seam and not cleaned)
        return cleaned


class ChunkBuffer:
    """Registry of live ``StreamSession`` objects, keyed by session id.

    Owned by a single transport; sessions never outlive their turn.
    """

    def __init__(
        self,
        max_buffer_chars: int = DEFAULT_BUFFER_CHARS,
        bounds: PageBounds = DEFAULT_BOUNDS,
    ):
        self.max_buffer_chars = max_buffer_chars
        self.bounds = bounds
        self._sessions: dict[str, StreamSession] = {}

    def open(
        self,
        session_id: str,
        current_page: int = 1,
        bounds: PageBounds | None = None,
    ) -> StreamSession:
        """Start a fresh session, replacing any previous state for the id."""
        session = StreamSession(
            session_id=session_id,
            current_page=max(1, current_page),
            page_bounds=bounds or self.bounds,
            max_buffer_chars=self.max_buffer_chars,
        )
        self._sessions[session_id] = session
        return session

    def close(self, session_id: str) -> StreamSession | None:
        """Discard a session; returns it so callers can read final counters."""
        return self._sessions.pop(session_id, None)
