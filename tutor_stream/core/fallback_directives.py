"""Synthesized highlight for turns where the model pointed at nothing."""

import re

from tutor_stream.core.geometry import DEFAULT_BOUNDS, make_highlight
from tutor_stream.core.schemas_directives import (
    FALLBACK_HIGHLIGHT_COLOR,
    FALLBACK_LABEL,
    Directive,
    Highlight,
    PageBounds,
)

FALLBACK_X = 80.0
TITLE_Y = 120.0
BODY_Y = 200.0
FALLBACK_HEIGHT = 24.0
DEFAULT_WIDTH = 400.0
MIN_WIDTH = 160.0
MAX_WIDTH = 520.0
CHARS_TO_POINTS = 7.0
MAX_HINT_CHARS = 120

_TITLE_CUES = ("title", "heading")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s")


def fallback(
    page: int,
    text_hint: str | None = None,
    bounds: PageBounds = DEFAULT_BOUNDS,
) -> Highlight:
    """
    Build a generic highlight for ``page``.

    Title-like hints go near the top of the page, anything else mid-page.
    Width follows the hint length, clamped to [160, 520].

    Args:
        page: Page to highlight on
        text_hint: Short text the highlight stands for
        bounds: Page coordinate space

    Returns:
        Normalized Highlight labelled ``AI Highlight``
    """
    hint = (text_hint or "").strip()
    if hint:
        lowered = hint.lower()
        y = TITLE_Y if any(cue in lowered for cue in _TITLE_CUES) else BODY_Y
        width = min(max(len(hint) * CHARS_TO_POINTS, MIN_WIDTH), MAX_WIDTH)
    else:
        y = BODY_Y
        width = DEFAULT_WIDTH

    return make_highlight(
        page,
        FALLBACK_X,
        y,
        width,
        FALLBACK_HEIGHT,
        bounds,
        color=FALLBACK_HIGHLIGHT_COLOR,
        label=FALLBACK_LABEL,
        source="fallback",
    )


def hint_from_reply(text: str) -> str:
    """First sentence of the cleaned reply, capped for width estimation."""
    text = " ".join(text.split())
    if not text:
        return ""
    first = _SENTENCE_END.split(text, maxsplit=1)[0]
    return first[:MAX_HINT_CHARS]


def needs_fallback(directives: list[Directive]) -> bool:
    """A turn gets a fallback only when it produced no directive of any kind.

    Navigation-only turns already moved the viewer somewhere, so they are
    left alone.
    """
    return not directives


def fallback_for_turn(
    directives: list[Directive],
    page: int,
    reply_text: str,
    bounds: PageBounds = DEFAULT_BOUNDS,
) -> Highlight | None:
    """Return the fallback highlight for a finished turn, or None if not needed."""
    if not needs_fallback(directives):
        return None
    return fallback(page, hint_from_reply(reply_text), bounds)
