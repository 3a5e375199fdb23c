"""Pydantic schemas for directives recovered from assistant text.

Directives are frozen: geometry is normalized before a model is built
(see ``tutor_stream.core.geometry``), and field constraints here only
guard the resulting invariants.
"""

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

# LAST PAGE resolves to this; callers clamp it against the real page count
LAST_PAGE_SENTINEL = 9999

DEFAULT_HIGHLIGHT_COLOR = "rgba(255, 255, 0, 0.3)"
DEFAULT_CIRCLE_COLOR = "rgba(255, 0, 0, 0.7)"
DEFAULT_ARROW_COLOR = "rgba(255, 0, 0, 0.8)"
DEFAULT_UNDERLINE_COLOR = "rgba(0, 0, 255, 0.8)"
DEFAULT_TEXT_COLOR = "rgba(0, 0, 0, 0.9)"
DEFAULT_RECTANGLE_COLOR = "rgba(0, 0, 255, 0.3)"
FALLBACK_HIGHLIGHT_COLOR = "rgba(255, 255, 0, 0.25)"
FALLBACK_LABEL = "AI Highlight"


# ============================================================================
# Geometry primitives
# ============================================================================


class PageBounds(BaseModel):
    """Page coordinate space, in points (US Letter by default)."""

    model_config = ConfigDict(frozen=True)

    width: float = Field(default=612.0, gt=20)
    height: float = Field(default=792.0, gt=20)


class LineBox(BaseModel):
    """One rendered line of a highlight."""

    model_config = ConfigDict(frozen=True)

    x: float = Field(ge=0)
    y: float = Field(ge=0)
    width: float = Field(gt=0)
    height: float = Field(gt=0)


# ============================================================================
# Directive variants
# ============================================================================


class _Directive(BaseModel):
    model_config = ConfigDict(frozen=True)


class Highlight(_Directive):
    type: Literal["highlight"] = "highlight"
    page: int = Field(ge=1)
    x: float = Field(ge=0)
    y: float = Field(ge=0)
    width: float = Field(gt=0)
    height: float = Field(gt=0)
    color: str = DEFAULT_HIGHLIGHT_COLOR
    opacity: float = Field(default=0.35, ge=0, le=1)
    lines: tuple[LineBox, ...] = ()
    label: str | None = None
    source: Literal["model", "fallback"] = "model"


class Circle(_Directive):
    type: Literal["circle"] = "circle"
    page: int = Field(ge=1)
    x: float = Field(ge=0)
    y: float = Field(ge=0)
    radius: float = Field(ge=5, le=100)
    color: str = DEFAULT_CIRCLE_COLOR


class Arrow(_Directive):
    """Arrow from (x, y) to (x + dx, y + dy)."""

    type: Literal["arrow"] = "arrow"
    page: int = Field(ge=1)
    x: float = Field(ge=0)
    y: float = Field(ge=0)
    dx: float
    dy: float
    color: str = DEFAULT_ARROW_COLOR


class Underline(_Directive):
    type: Literal["underline"] = "underline"
    page: int = Field(ge=1)
    x: float = Field(ge=0)
    y: float = Field(ge=0)
    width: float = Field(gt=0)
    color: str = DEFAULT_UNDERLINE_COLOR


class TextLabel(_Directive):
    type: Literal["text"] = "text"
    page: int = Field(ge=1)
    x: float = Field(ge=0)
    y: float = Field(ge=0)
    content: str = Field(min_length=1)
    color: str = DEFAULT_TEXT_COLOR


class Rectangle(_Directive):
    type: Literal["rectangle"] = "rectangle"
    page: int = Field(ge=1)
    x: float = Field(ge=0)
    y: float = Field(ge=0)
    width: float = Field(gt=0)
    height: float = Field(gt=0)
    color: str = DEFAULT_RECTANGLE_COLOR


class NavigationKind(str, Enum):
    """How a navigation target was expressed."""
    ABSOLUTE = "absolute"
    RELATIVE = "relative"
    FIRST = "first"
    LAST = "last"


class Navigate(_Directive):
    """Page navigation.

    ``target_page`` is resolved against the page the turn started on but is
    not bounds-checked: GO TO PAGE passes the model's number through and LAST
    uses ``LAST_PAGE_SENTINEL``. Use ``clamp`` once the page count is known.
    """

    type: Literal["navigate"] = "navigate"
    kind: NavigationKind
    target_page: int
    offset: int | None = None

    def clamp(self, total_pages: int) -> int:
        """Return the target page bounded to ``[1, total_pages]``."""
        total = max(1, total_pages)
        if self.kind == NavigationKind.LAST:
            return total
        return max(1, min(self.target_page, total))


Directive = Annotated[
    Union[Highlight, Circle, Arrow, Underline, TextLabel, Rectangle, Navigate],
    Field(discriminator="type"),
]
