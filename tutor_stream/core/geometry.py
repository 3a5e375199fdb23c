"""Coordinate normalization for directive geometry.

Language models routinely emit coordinates that fall off the page, boxes
that cover half of it, or circles the size of a paragraph. Everything here is
total: out-of-range input is corrected, never rejected, and every builder
returns a directive that satisfies the page-bound invariants.

Rules, in order:
1. clamp x to [0, W - 20] and y to [0, H - 20]
2. clamp width/height to the page edge, minimum 10
3. split highlights taller than 40 into 22-point lines
4. raise lines shorter than 12 to 16
5. snap line y to the 22-point text grid
6. clamp circle radius to [5, 100]
"""

import math
from dataclasses import dataclass

from tutor_stream.core.schemas_directives import (
    DEFAULT_ARROW_COLOR,
    DEFAULT_CIRCLE_COLOR,
    DEFAULT_HIGHLIGHT_COLOR,
    DEFAULT_RECTANGLE_COLOR,
    DEFAULT_TEXT_COLOR,
    DEFAULT_UNDERLINE_COLOR,
    Arrow,
    Circle,
    Highlight,
    LineBox,
    PageBounds,
    Rectangle,
    TextLabel,
    Underline,
)

LINE_HEIGHT = 22.0
EDGE_MARGIN = 20.0
MIN_EXTENT = 10.0
SPLIT_THRESHOLD = 40.0
MIN_LEGIBLE_HEIGHT = 12.0
LEGIBLE_HEIGHT = 16.0
MIN_RADIUS = 5.0
MAX_RADIUS = 100.0

DEFAULT_BOUNDS = PageBounds()


@dataclass(frozen=True)
class Box:
    """Axis-aligned box after clamping (rules 1-2)."""

    x: float
    y: float
    width: float
    height: float


def _finite(value: float, default: float = 0.0) -> float:
    """Coerce NaN to ``default`` and infinities to large finite values."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    if math.isinf(number):
        return 1e12 if number > 0 else -1e12
    return number


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


def clamp_x(x: float, bounds: PageBounds = DEFAULT_BOUNDS) -> float:
    return _clamp(_finite(x), 0.0, bounds.width - EDGE_MARGIN)


def clamp_y(y: float, bounds: PageBounds = DEFAULT_BOUNDS) -> float:
    return _clamp(_finite(y), 0.0, bounds.height - EDGE_MARGIN)


def clamp_extent(extent: float, origin: float, limit: float) -> float:
    """Clamp a width/height so ``origin + extent <= limit``, minimum 10.

    ``origin`` is already clamped to ``limit - 20``, so the minimum always fits.
    """
    return _clamp(_finite(extent, MIN_EXTENT), MIN_EXTENT, limit - origin)


def clamp_page(page: int | float, current_page: int = 1) -> int:
    """Pages are 1-based; anything below 1 falls back to ``current_page``."""
    number = _finite(page, 0.0)
    if number < 1:
        return max(1, int(current_page))
    return int(number)


def normalize_box(
    x: float,
    y: float,
    width: float,
    height: float,
    bounds: PageBounds = DEFAULT_BOUNDS,
) -> Box:
    """Apply rules 1-2 to a raw box."""
    cx = clamp_x(x, bounds)
    cy = clamp_y(y, bounds)
    return Box(
        x=cx,
        y=cy,
        width=clamp_extent(width, cx, bounds.width),
        height=clamp_extent(height, cy, bounds.height),
    )


def snap_to_grid(y: float, line_height: float = LINE_HEIGHT) -> float:
    return round(y / line_height) * line_height


def split_lines(
    box: Box,
    bounds: PageBounds = DEFAULT_BOUNDS,
    line_height: float = LINE_HEIGHT,
) -> tuple[LineBox, ...]:
    """Apply rules 3-5: one line box per text line, snapped to the grid.

    A box of height 88 becomes four 22-point lines whose heights sum to 88.
    """
    if box.height > SPLIT_THRESHOLD:
        full_lines = int(box.height // line_height)
        pieces = [line_height] * full_lines
        remainder = box.height - full_lines * line_height
        if remainder > 1e-9:
            pieces.append(remainder)
    else:
        pieces = [box.height]

    pieces = [LEGIBLE_HEIGHT if piece < MIN_LEGIBLE_HEIGHT else piece for piece in pieces]

    base = snap_to_grid(box.y, line_height)
    if base > bounds.height - EDGE_MARGIN or base + sum(pieces) > bounds.height:
        # Rounding up would push the stack off the page; snap down instead.
        base = math.floor(box.y / line_height) * line_height

    lines: list[LineBox] = []
    top = base
    for piece in pieces:
        room = bounds.height - top
        if room <= 0:
            break
        lines.append(LineBox(x=box.x, y=top, width=box.width, height=min(piece, room)))
        top += line_height
    return tuple(lines)


# ============================================================================
# Directive builders
# ============================================================================


def make_highlight(
    page: int,
    x: float,
    y: float,
    width: float,
    height: float,
    bounds: PageBounds = DEFAULT_BOUNDS,
    color: str | None = None,
    opacity: float | None = None,
    label: str | None = None,
    source: str = "model",
) -> Highlight:
    box = normalize_box(x, y, width, height, bounds)
    lines = split_lines(box, bounds)
    if label is None and len(lines) > 1:
        label = f"{len(lines)} lines"
    return Highlight(
        page=clamp_page(page),
        x=box.x,
        y=box.y,
        width=box.width,
        height=box.height,
        color=color or DEFAULT_HIGHLIGHT_COLOR,
        opacity=_clamp(_finite(opacity, 0.35), 0.0, 1.0) if opacity is not None else 0.35,
        lines=lines,
        label=label,
        source=source,
    )


def make_circle(
    page: int,
    x: float,
    y: float,
    radius: float,
    bounds: PageBounds = DEFAULT_BOUNDS,
    color: str | None = None,
) -> Circle:
    return Circle(
        page=clamp_page(page),
        x=clamp_x(x, bounds),
        y=clamp_y(y, bounds),
        radius=_clamp(_finite(radius, MIN_RADIUS), MIN_RADIUS, MAX_RADIUS),
        color=color or DEFAULT_CIRCLE_COLOR,
    )


def make_arrow(
    page: int,
    x1: float,
    y1: float,
    x2: float,
    y2: float,
    bounds: PageBounds = DEFAULT_BOUNDS,
    color: str | None = None,
) -> Arrow:
    """Arrow from tail (x1, y1) to head (x2, y2); both ends land on the page."""
    tail_x = clamp_x(x1, bounds)
    tail_y = clamp_y(y1, bounds)
    head_x = _clamp(_finite(x2), 0.0, bounds.width)
    head_y = _clamp(_finite(y2), 0.0, bounds.height)
    return Arrow(
        page=clamp_page(page),
        x=tail_x,
        y=tail_y,
        dx=head_x - tail_x,
        dy=head_y - tail_y,
        color=color or DEFAULT_ARROW_COLOR,
    )


def make_underline(
    page: int,
    x: float,
    y: float,
    width: float,
    bounds: PageBounds = DEFAULT_BOUNDS,
    color: str | None = None,
) -> Underline:
    cx = clamp_x(x, bounds)
    return Underline(
        page=clamp_page(page),
        x=cx,
        y=clamp_y(y, bounds),
        width=clamp_extent(width, cx, bounds.width),
        color=color or DEFAULT_UNDERLINE_COLOR,
    )


def make_text_label(
    page: int,
    x: float,
    y: float,
    content: str,
    bounds: PageBounds = DEFAULT_BOUNDS,
    color: str | None = None,
) -> TextLabel:
    return TextLabel(
        page=clamp_page(page),
        x=clamp_x(x, bounds),
        y=clamp_y(y, bounds),
        content=content.strip() or "…",
        color=color or DEFAULT_TEXT_COLOR,
    )


def make_rectangle(
    page: int,
    x: float,
    y: float,
    width: float,
    height: float,
    bounds: PageBounds = DEFAULT_BOUNDS,
    color: str | None = None,
) -> Rectangle:
    box = normalize_box(x, y, width, height, bounds)
    return Rectangle(
        page=clamp_page(page),
        x=box.x,
        y=box.y,
        width=box.width,
        height=box.height,
        color=color or DEFAULT_RECTANGLE_COLOR,
    )
