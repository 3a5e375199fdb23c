"""Directive extraction from assistant prose.

The tutor model is prompted to embed bracketed commands in its reply, e.g.
``[HIGHLIGHT 1 80 200 400 22]`` or ``[GO TO PAGE 3]``. Models are sloppy about
formatting, so every geometric command accepts three surface syntaxes:

    [HIGHLIGHT 1 100 200 300 50 color="..."]         space separated
    [HIGHLIGHT: 1, 100, 200, 300, 50]                colon/comma separated
    [HIGHLIGHT page=1 x=100 y=200 w=300 h=50]        key=value, any order

Matching is purely textual. A command is complete once its closing bracket
is in the window; incomplete ones are left for the chunk buffer to retry.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Optional

from tutor_stream.core.geometry import (
    DEFAULT_BOUNDS,
    clamp_page,
    make_arrow,
    make_circle,
    make_highlight,
    make_rectangle,
    make_text_label,
    make_underline,
)
from tutor_stream.core.logging import get_logger
from tutor_stream.core.schemas_directives import (
    LAST_PAGE_SENTINEL,
    Directive,
    Navigate,
    NavigationKind,
    PageBounds,
)

logger = get_logger(__name__)

_NUM = r"[-+]?\d+(?:\.\d+)?"
_SPACE_COLOR = r'(?:\s+(?i:colou?r)\s*=\s*"(?P<color>[^"\]]*)")?'
_COLON_COLOR = r'(?:\s*,\s*(?i:colou?r)\s*=\s*"(?P<color>[^"\]]*)")?'
_KV_PAIR = re.compile(r'([A-Za-z_][A-Za-z0-9_]*)\s*[=:]\s*(?:"([^"]*)"|([^\s,\]]+))')

# Geometric keywords are upper-case only, matching the prompt; prose such as
# "[Text omitted]" must survive untouched.
_KEYWORDS: dict[str, str] = {
    "highlight": "HIGHLIGHT",
    "circle": "CIRCLE",
    "arrow": "ARROW",
    "underline": "UNDERLINE",
    "text": "TEXT",
    "rectangle": r"RECT(?:ANGLE)?",
}

_KEY_ALIASES = {
    "w": "width",
    "h": "height",
    "r": "radius",
    "x1": "x",
    "y1": "y",
    "text": "content",
    "label": "content",
    "p": "page",
    "colour": "color",
}

# Any complete bracketed token that names a directive, valid or not. Used to
# keep malformed commands out of the text shown to the user.
_ANY_GEOMETRIC_TOKEN = re.compile(
    r"\[\s*(?:HIGHLIGHT|CIRCLE|ARROW|UNDERLINE|TEXT|RECT(?:ANGLE)?)(?=[\s:\d\]])[^\[\]]*\]"
)
_ANY_NAVIGATION_TOKEN = re.compile(
    r"\[\s*(?:GO\s*TO\s+PAGE[^\[\]]*|NEXT\s+PAGE|PREV(?:IOUS)?\s+PAGE|FIRST\s+PAGE|LAST\s+PAGE)\s*\]",
    re.IGNORECASE,
)

# Prefixes checked when deciding whether a trailing "[..." may still become a
# directive once more text arrives.
_PARTIAL_PREFIXES = (
    "HIGHLIGHT",
    "CIRCLE",
    "ARROW",
    "UNDERLINE",
    "TEXT",
    "RECTANGLE",
    "GO TO PAGE",
    "GOTO PAGE",
    "NEXT PAGE",
    "PREV PAGE",
    "PREVIOUS PAGE",
    "FIRST PAGE",
    "LAST PAGE",
)


@dataclass(frozen=True)
class _ParseContext:
    current_page: int
    bounds: PageBounds


@dataclass
class ParseResult:
    """Directives in text order plus the text with every command removed."""

    directives: list[Directive] = field(default_factory=list)
    residual_text: str = ""
    # Spans of every command token removed from the input, valid or malformed.
    spans: list[tuple[int, int]] = field(default_factory=list)


Builder = Callable[[dict[str, str], _ParseContext], Optional[Directive]]


# ============================================================================
# Field helpers
# ============================================================================


def _num(fields: dict[str, str], name: str) -> float | None:
    raw = fields.get(name)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _page(fields: dict[str, str], ctx: _ParseContext) -> int:
    page = _num(fields, "page")
    if page is None:
        return max(1, ctx.current_page)
    return clamp_page(page, ctx.current_page)


def _require(fields: dict[str, str], *names: str) -> list[float] | None:
    values = [_num(fields, name) for name in names]
    if any(value is None for value in values):
        return None
    return values


# ============================================================================
# Builders
# ============================================================================


def _build_highlight(fields: dict[str, str], ctx: _ParseContext) -> Directive | None:
    values = _require(fields, "x", "y", "width", "height")
    if values is None:
        return None
    x, y, width, height = values
    return make_highlight(
        _page(fields, ctx),
        x,
        y,
        width,
        height,
        ctx.bounds,
        color=fields.get("color") or None,
        opacity=_num(fields, "opacity"),
    )


def _build_circle(fields: dict[str, str], ctx: _ParseContext) -> Directive | None:
    values = _require(fields, "x", "y", "radius")
    if values is None:
        return None
    x, y, radius = values
    return make_circle(_page(fields, ctx), x, y, radius, ctx.bounds, color=fields.get("color") or None)


def _build_arrow(fields: dict[str, str], ctx: _ParseContext) -> Directive | None:
    values = _require(fields, "x", "y")
    if values is None:
        return None
    x, y = values
    x2, y2 = _num(fields, "x2"), _num(fields, "y2")
    if x2 is None or y2 is None:
        dx, dy = _num(fields, "dx"), _num(fields, "dy")
        if dx is None or dy is None:
            return None
        x2, y2 = x + dx, y + dy
    return make_arrow(_page(fields, ctx), x, y, x2, y2, ctx.bounds, color=fields.get("color") or None)


def _build_underline(fields: dict[str, str], ctx: _ParseContext) -> Directive | None:
    values = _require(fields, "x", "y", "width")
    if values is None:
        return None
    x, y, width = values
    return make_underline(_page(fields, ctx), x, y, width, ctx.bounds, color=fields.get("color") or None)


def _build_text(fields: dict[str, str], ctx: _ParseContext) -> Directive | None:
    values = _require(fields, "x", "y")
    content = (fields.get("content") or "").strip()
    if values is None or not content:
        return None
    x, y = values
    return make_text_label(_page(fields, ctx), x, y, content, ctx.bounds, color=fields.get("color") or None)


def _build_rectangle(fields: dict[str, str], ctx: _ParseContext) -> Directive | None:
    values = _require(fields, "x", "y", "width", "height")
    if values is None:
        return None
    x, y, width, height = values
    return make_rectangle(
        _page(fields, ctx), x, y, width, height, ctx.bounds, color=fields.get("color") or None
    )


def _build_goto(fields: dict[str, str], ctx: _ParseContext) -> Directive | None:
    target = _num(fields, "page")
    if target is None:
        return None
    return Navigate(kind=NavigationKind.ABSOLUTE, target_page=int(target))


def _build_next(fields: dict[str, str], ctx: _ParseContext) -> Directive:
    return Navigate(kind=NavigationKind.RELATIVE, target_page=ctx.current_page + 1, offset=1)


def _build_prev(fields: dict[str, str], ctx: _ParseContext) -> Directive:
    return Navigate(kind=NavigationKind.RELATIVE, target_page=ctx.current_page - 1, offset=-1)


def _build_first(fields: dict[str, str], ctx: _ParseContext) -> Directive:
    return Navigate(kind=NavigationKind.FIRST, target_page=1)


def _build_last(fields: dict[str, str], ctx: _ParseContext) -> Directive:
    return Navigate(kind=NavigationKind.LAST, target_page=LAST_PAGE_SENTINEL)


# ============================================================================
# Grammar table
# ============================================================================


def _field_pattern(name: str) -> str:
    if name == "content":
        return r'"(?P<content>[^"\]]+)"'
    return rf"(?P<{name}>{_NUM})"


def _positional(keyword: str, names: tuple[str, ...]) -> list[re.Pattern]:
    space = (
        rf"\[\s*{keyword}\s*(?:PAGE\s+)?(?P<page>\d+)"
        + "".join(rf"\s+{_field_pattern(name)}" for name in names)
        + _SPACE_COLOR
        + r"\s*\]"
    )
    colon = (
        rf"\[\s*{keyword}\s*:\s*(?:PAGE\s+)?(?P<page>\d+)"
        + "".join(rf"\s*,\s*{_field_pattern(name)}" for name in names)
        + _COLON_COLOR
        + r"\s*\]"
    )
    return [re.compile(space), re.compile(colon)]


def _key_value(keyword: str) -> re.Pattern:
    return re.compile(rf"\[\s*{keyword}\s+(?P<body>[^\[\]]*=[^\[\]]*)\]")


_GEOMETRIC_FIELDS: dict[str, tuple[tuple[str, ...], Builder]] = {
    "highlight": (("x", "y", "width", "height"), _build_highlight),
    "circle": (("x", "y", "radius"), _build_circle),
    "arrow": (("x", "y", "x2", "y2"), _build_arrow),
    "underline": (("x", "y", "width"), _build_underline),
    "text": (("x", "y", "content"), _build_text),
    "rectangle": (("x", "y", "width", "height"), _build_rectangle),
}


def _build_grammars() -> list[tuple[re.Pattern, Builder]]:
    grammars: list[tuple[re.Pattern, Builder]] = []
    for kind, (names, builder) in _GEOMETRIC_FIELDS.items():
        keyword = _KEYWORDS[kind]
        for pattern in _positional(keyword, names):
            grammars.append((pattern, builder))
        grammars.append((_key_value(keyword), builder))

    grammars.extend(
        [
            (re.compile(r"\[\s*GO\s*TO\s+PAGE\s*:?\s*(?P<page>\d+)\s*\]", re.IGNORECASE), _build_goto),
            (re.compile(r"\[\s*NEXT\s+PAGE\s*\]", re.IGNORECASE), _build_next),
            (re.compile(r"\[\s*PREV(?:IOUS)?\s+PAGE\s*\]", re.IGNORECASE), _build_prev),
            (re.compile(r"\[\s*FIRST\s+PAGE\s*\]", re.IGNORECASE), _build_first),
            (re.compile(r"\[\s*LAST\s+PAGE\s*\]", re.IGNORECASE), _build_last),
        ]
    )
    return grammars


_GRAMMARS = _build_grammars()


def _match_fields(match: re.Match) -> dict[str, str]:
    groups = {k: v for k, v in match.groupdict().items() if v is not None}
    body = groups.pop("body", None)
    if body is None:
        return groups

    fields: dict[str, str] = {}
    for key, quoted, bare in _KV_PAIR.findall(body):
        name = key.lower()
        name = _KEY_ALIASES.get(name, name)
        fields[name] = quoted if quoted else bare
    return fields


def _overlaps(span: tuple[int, int], claimed: list[tuple[int, int]]) -> bool:
    start, end = span
    return any(start < c_end and c_start < end for c_start, c_end in claimed)


def _remove_spans(text: str, spans: list[tuple[int, int]]) -> str:
    """Cut ``spans`` out of ``text`` without leaving doubled spaces at the seams."""
    if not spans:
        return text
    pieces: list[str] = []
    cursor = 0
    for start, end in sorted(spans):
        left = text[cursor:start]
        if pieces and pieces[-1][-1:] in (" ", "\t") and left[:1] in (" ", "\t"):
            left = left.lstrip(" \t")
        pieces.append(left)
        cursor = end
    tail = text[cursor:]
    if pieces and pieces[-1][-1:] in (" ", "\t") and tail[:1] in (" ", "\t"):
        tail = tail.lstrip(" \t")
    pieces.append(tail)
    return "".join(pieces)


def _scan(text: str, ctx: _ParseContext) -> tuple[list[tuple[int, Directive]], list[tuple[int, int]]]:
    found: list[tuple[int, Directive]] = []
    claimed: list[tuple[int, int]] = []

    for pattern, builder in _GRAMMARS:
        for match in pattern.finditer(text):
            span = match.span()
            if _overlaps(span, claimed):
                continue
            claimed.append(span)
            directive = builder(_match_fields(match), ctx)
            if directive is None:
                logger.debug(f"Dropping malformed directive: {match.group(0)[:80]!r}")
                continue
            found.append((span[0], directive))

    for pattern in (_ANY_GEOMETRIC_TOKEN, _ANY_NAVIGATION_TOKEN):
        for match in pattern.finditer(text):
            span = match.span()
            if not _overlaps(span, claimed):
                logger.debug(f"Stripping unrecognized directive token: {match.group(0)[:80]!r}")
                claimed.append(span)

    found.sort(key=lambda item: item[0])
    return found, sorted(claimed)


def parse(
    text: str,
    current_page: int = 1,
    bounds: PageBounds = DEFAULT_BOUNDS,
) -> ParseResult:
    """
    Extract every complete directive from ``text``.

    Args:
        text: Text window to scan
        current_page: Page the turn started on; relative navigation and
            commands without a usable page number resolve against it
        bounds: Page coordinate space used for normalization

    Returns:
        ParseResult with directives in text order and the residual prose,
        whitespace collapsed
    """
    if not text:
        return ParseResult()

    ctx = _ParseContext(current_page=max(1, current_page), bounds=bounds)
    found, spans = _scan(text, ctx)
    residual = _remove_spans(text, spans)
    residual = re.sub(r"\s{2,}", " ", residual).strip()
    return ParseResult(
        directives=[directive for _, directive in found],
        residual_text=residual,
        spans=spans,
    )


def strip_directives(text: str) -> str:
    """Remove complete command tokens from a chunk, preserving edge whitespace."""
    if "[" not in text:
        return text
    ctx = _ParseContext(current_page=1, bounds=DEFAULT_BOUNDS)
    _, spans = _scan(text, ctx)
    return _remove_spans(text, spans)


def find_partial_directive(text: str) -> int:
    """
    Locate a trailing, unclosed ``[`` that may still become a directive.

    Returns:
        Index of the opening bracket, or -1 when the tail cannot be the start
        of a command (no open bracket, or it opens something else like "[1").
    """
    start = text.rfind("[")
    if start == -1 or "]" in text[start:]:
        return -1

    candidate = " ".join(text[start + 1 :].split()).upper()
    if not candidate:
        return start
    for prefix in _PARTIAL_PREFIXES:
        if prefix.startswith(candidate) or candidate.startswith(prefix):
            return start
        if prefix.replace(" ", "").startswith(candidate.replace(" ", "")):
            return start
    return -1


def is_command_fragment(text: str) -> bool:
    """True when ``text`` is an unfinished command such as ``[HIGHLIGHT 1 80``."""
    if not text.startswith("["):
        return False
    candidate = " ".join(text[1:].split()).upper()
    return any(candidate.startswith(prefix.split()[0]) for prefix in _PARTIAL_PREFIXES)
