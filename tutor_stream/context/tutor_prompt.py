"""System prompt and message window for tutoring turns.

The prompt tells the model which directive syntax to use and what the page
coordinate space looks like; everything else about what to say is left to
the model.
"""

from tutor_stream.core.config import Settings
from tutor_stream.core.llm import CompletionRequest
from tutor_stream.core.logging import get_logger
from tutor_stream.core.schemas_tutor import ChatMessage, PageSnapshot

logger = get_logger(__name__)

MINIMAL_SYSTEM_PROMPT = "You're a PDF study assistant. Be concise."

_VALID_ROLES = {"user", "assistant"}


# =========================
# Base Identity
# =========================

BASE_IDENTITY = """You are an AI tutor helping a student understand a PDF document. Explain concepts clearly, use examples, check for understanding, and help the student navigate the material."""


# =========================
# Directive Syntax
# =========================

DIRECTIVE_GUIDE = """# Page navigation
Use these commands when the answer is on a different page, and say why you are navigating:
- [GO TO PAGE x]
- [NEXT PAGE] / [PREV PAGE]
- [FIRST PAGE] / [LAST PAGE]

# Visual annotations
Always include at least one annotation or navigation command relevant to the request:
- [HIGHLIGHT {page} x y width height color="rgba(255,255,0,0.35)"]
- [CIRCLE {page} x y radius color="rgba(255,0,0,0.4)"]
- [ARROW {page} x1 y1 x2 y2 color="rgba(255,0,0,0.8)"]
- [UNDERLINE {page} x y width color="rgba(0,0,255,0.8)"]
- [TEXT {page} x y "content" color="rgba(0,0,0,0.9)"]
- [RECTANGLE {page} x y width height color="rgba(0,0,255,0.3)"]

# Coordinates
- Page is {width:.0f}x{height:.0f} points; text starts near x=80, line height is 22
- Titles: y=120-150, height 25-35. Body text: y=200-600, height 18-25
- Prefer several one-line highlights over one tall box, e.g.
  [HIGHLIGHT {page} 80 200 400 22] [HIGHLIGHT {page} 80 222 400 22]
- If you cannot estimate coordinates use [HIGHLIGHT {page} 80 300 400 25] and say it is approximate"""


def _page_section(snapshot: PageSnapshot) -> str:
    parts = [
        f"You are currently viewing Page {snapshot.current_page} of {snapshot.total_pages}.",
        "",
        f"Current Page Content ({snapshot.current_page}/{snapshot.total_pages}):",
        snapshot.current or "No text available for current page",
        "",
    ]
    if snapshot.previous:
        parts += [f"Previous Page ({snapshot.current_page - 1}):", snapshot.previous, ""]
    else:
        parts += ["No previous page available", ""]
    if snapshot.next:
        parts += [f"Next Page ({snapshot.current_page + 1}):", snapshot.next, ""]
    else:
        parts += ["No next page available", ""]

    if snapshot.page_hints:
        parts.append("PAGE HINTS (candidate relevant pages):")
        for hint in snapshot.page_hints:
            parts.append(f"- Page {hint.page} (score {hint.score:g}): {hint.snippet[:120]}")
    return "\n".join(parts).rstrip()


def build_system_prompt(snapshot: PageSnapshot, page_width: float = 612, page_height: float = 792) -> str:
    guide = DIRECTIVE_GUIDE.format(page=snapshot.current_page, width=page_width, height=page_height)
    return "\n\n".join([BASE_IDENTITY, _page_section(snapshot), guide])


def history_window(snapshot: PageSnapshot, max_messages: int = 6) -> int:
    """Fewer history messages when the page text is already long."""
    content_length = len(snapshot.current) + len(snapshot.previous or "") + len(snapshot.next or "")
    if content_length > 5000:
        return min(max_messages, 4)
    if content_length > 2000:
        return min(max_messages, 5)
    return max_messages


def prepare_messages(
    messages: list[ChatMessage],
    keep: int,
    max_chars: int = 1200,
) -> list[dict[str, str]]:
    """
    Recent, non-empty messages in completion-service format.

    Unknown roles are sent as ``user``. The window always ends on a user
    message, which the completion service requires.
    """
    prepared = [
        {
            "role": msg.role if msg.role in _VALID_ROLES else "user",
            "content": msg.content[:max_chars],
        }
        for msg in messages
        if msg.content and msg.content.strip()
    ][-keep:]

    while prepared and prepared[-1]["role"] != "user":
        prepared.pop()
    return prepared


def build_turn_request(
    messages: list[ChatMessage],
    snapshot: PageSnapshot,
    settings: Settings,
    page_width: float = 612,
    page_height: float = 792,
) -> CompletionRequest:
    """Full request for a streamed tutoring turn."""
    keep = history_window(snapshot, settings.MAX_HISTORY_MESSAGES)
    prepared = prepare_messages(messages, keep, settings.MAX_MESSAGE_CHARS)
    logger.debug(
        f"Turn request: page={snapshot.current_page}/{snapshot.total_pages}, "
        f"history_msgs={len(prepared)}, current_len={len(snapshot.current)}"
    )
    return CompletionRequest(
        system=build_system_prompt(snapshot, page_width, page_height),
        messages=prepared,
        model=settings.CHAT_MODEL,
        max_tokens=settings.CHAT_RESPONSE_BUFFER,
        temperature=settings.CHAT_TEMPERATURE,
    )


def build_minimal_request(messages: list[ChatMessage], settings: Settings) -> CompletionRequest:
    """Smallest viable request: short prompt, latest user message, small budget."""
    latest_user = next(
        (msg for msg in reversed(messages) if msg.role == "user" and msg.content.strip()),
        None,
    )
    content = latest_user.content[: settings.MAX_MESSAGE_CHARS] if latest_user else "Explain the current page."
    return CompletionRequest(
        system=MINIMAL_SYSTEM_PROMPT,
        messages=[{"role": "user", "content": content}],
        model=settings.FALLBACK_MODEL,
        max_tokens=settings.MINIMAL_RESPONSE_BUFFER,
        temperature=settings.CHAT_TEMPERATURE,
    )
