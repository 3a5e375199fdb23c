"""Tests for tutor prompt assembly."""

from tutor_stream.context.tutor_prompt import (
    MINIMAL_SYSTEM_PROMPT,
    build_minimal_request,
    build_system_prompt,
    build_turn_request,
    history_window,
    prepare_messages,
)
from tutor_stream.core.config import Settings
from tutor_stream.core.schemas_tutor import ChatMessage, PageHint, PageSnapshot


def _snapshot(**overrides) -> PageSnapshot:
    fields = {"current": "Mitochondria are the powerhouse.", "current_page": 3, "total_pages": 9}
    fields.update(overrides)
    return PageSnapshot(**fields)


def test_system_prompt_contains_page_and_syntax():
    prompt = build_system_prompt(_snapshot(previous="Cell walls.", page_hints=(PageHint(page=7, score=0.9, snippet="ATP"),)))
    assert "Page 3 of 9" in prompt
    assert "Mitochondria are the powerhouse." in prompt
    assert "Previous Page (2):" in prompt
    assert "No next page available" in prompt
    assert "[HIGHLIGHT 3 x y width height" in prompt
    assert "612x792" in prompt
    assert "- Page 7 (score 0.9): ATP" in prompt


def test_history_window_shrinks_with_page_text():
    assert history_window(_snapshot(current="x" * 100)) == 6
    assert history_window(_snapshot(current="x" * 3000)) == 5
    assert history_window(_snapshot(current="x" * 5000, next="y" * 300)) == 4


def test_prepare_messages_trims_and_fixes_roles():
    messages = [
        ChatMessage(role="user", content="one"),
        ChatMessage(role="assistant", content="   "),
        ChatMessage(role="system", content="two"),
        ChatMessage(role="assistant", content="three"),
        ChatMessage(role="user", content="x" * 2000),
    ]
    prepared = prepare_messages(messages, keep=3, max_chars=1200)
    assert [m["role"] for m in prepared] == ["user", "assistant", "user"]
    assert prepared[0]["content"] == "two"
    assert len(prepared[-1]["content"]) == 1200


def test_prepare_messages_ends_on_user_turn():
    messages = [ChatMessage(role="user", content="q"), ChatMessage(role="assistant", content="a")]
    assert prepare_messages(messages, keep=6) == [{"role": "user", "content": "q"}]


def test_turn_request_uses_settings():
    settings = Settings(ANTHROPIC_API_KEY="", CHAT_MODEL="model-a", CHAT_RESPONSE_BUFFER=800)
    request = build_turn_request([ChatMessage(role="user", content="hi")], _snapshot(), settings)
    assert request.model == "model-a"
    assert request.max_tokens == 800
    assert request.messages == [{"role": "user", "content": "hi"}]


def test_minimal_request():
    settings = Settings(ANTHROPIC_API_KEY="", FALLBACK_MODEL="model-b")
    request = build_minimal_request(
        [
            ChatMessage(role="user", content="first question"),
            ChatMessage(role="assistant", content="answer"),
            ChatMessage(role="user", content="latest question"),
        ],
        settings,
    )
    assert request.system == MINIMAL_SYSTEM_PROMPT
    assert request.messages == [{"role": "user", "content": "latest question"}]
    assert request.max_tokens == 300
    assert request.model == "model-b"
