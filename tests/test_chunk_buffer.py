"""Tests for chunk buffering, display hold-back and dedup."""

from tutor_stream.core.chunk_buffer import ChunkBuffer, StreamSession, fingerprint
from tutor_stream.core.schemas_directives import Highlight


def _feed_all(session: StreamSession, chunks):
    directives, text = [], []
    for chunk in chunks:
        result = session.feed(chunk)
        directives.extend(result.new_directives)
        text.append(result.cleaned_chunk)
    text.append(session.flush())
    return directives, "".join(text)


class TestSplitRecovery:
    def test_directive_split_across_two_chunks(self):
        session = StreamSession(session_id="s1")

        first = session.feed("[HIGH")
        assert first.new_directives == []

        second = session.feed("LIGHT 1 100 200 300 50]")
        assert len(second.new_directives) == 1
        h = second.new_directives[0]
        assert isinstance(h, Highlight)
        assert (h.page, h.x, h.y, h.width, h.height) == (1, 100, 200, 300, 50)

    def test_directive_split_into_many_chunks(self):
        session = StreamSession(session_id="s1")
        text = "Here it is [CIRCLE 1 300 400 30] and more."
        directives, shown = _feed_all(session, list(text))
        assert [d.type for d in directives] == ["circle"]
        assert shown == "Here it is and more."

    def test_partial_directive_never_displayed(self):
        session = StreamSession(session_id="s1")
        shown = [session.feed("Look [HIGH").cleaned_chunk]
        shown.append(session.feed("LIGHT 1 100 200 300 50] here").cleaned_chunk)
        assert "[" not in "".join(shown)
        assert "".join(shown) == "Look here"

    def test_non_directive_brackets_pass_through(self):
        session = StreamSession(session_id="s1")
        _, shown = _feed_all(session, ["See ref [1", "2] for details."])
        assert shown == "See ref [12] for details."


class TestDedup:
    def test_same_directive_twice_is_emitted_once(self):
        session = StreamSession(session_id="s1")
        directives, _ = _feed_all(
            session,
            ["[HIGHLIGHT 1 100 200 300 50] and again ", "[HIGHLIGHT 1 100 200 300 50]"],
        )
        assert len(directives) == 1
        assert session.duplicates_dropped == 1

    def test_dedup_ignores_color_and_size(self):
        session = StreamSession(session_id="s1")
        directives, _ = _feed_all(
            session,
            ['[HIGHLIGHT 1 100 200 300 50]', '[HIGHLIGHT 1 100 200 120 22 color="red"]'],
        )
        assert len(directives) == 1

    def test_different_position_is_new(self):
        session = StreamSession(session_id="s1")
        directives, _ = _feed_all(session, ["[HIGHLIGHT 1 100 200 300 22]", "[HIGHLIGHT 1 100 222 300 22]"])
        assert len(directives) == 2

    def test_rescanning_window_does_not_reemit(self):
        session = StreamSession(session_id="s1")
        session.feed("[NEXT PAGE] some text ")
        assert session.feed("more text").new_directives == []
        assert session.feed(" [NEXT PAGE]").new_directives == []

    def test_navigation_fingerprint(self):
        session = StreamSession(session_id="s1", current_page=2)
        (nav,) = session.feed("[NEXT PAGE]").new_directives
        assert fingerprint(nav) == ("navigate", 3, None, None)


class TestBufferBounds:
    def test_buffer_never_exceeds_cap(self):
        session = StreamSession(session_id="s1", max_buffer_chars=50)
        for _ in range(20):
            session.feed("[" + "x" * 30)
            assert len(session.rolling_buffer) <= 50

    def test_buffer_cursor_drops_consumed_text(self):
        session = StreamSession(session_id="s1")
        session.feed("Plain prose with [HIGHLIGHT 1 100 200 300 22] done")
        assert session.rolling_buffer == ""

    def test_flush_drops_unterminated_command(self):
        session = StreamSession(session_id="s1")
        session.feed("The answer [HIGHLIGHT 1 80")
        assert session.flush() == ""

    def test_flush_releases_held_text(self):
        session = StreamSession(session_id="s1")
        session.feed("Costs [")
        assert session.flush() == "["

    def test_long_label_held_until_closed(self):
        session = StreamSession(session_id="s1")
        label = "a" * 260
        directives, shown = _feed_all(session, ["See ", f'[TEXT 1 100 200 "{label}', '"] done'])
        assert [d.type for d in directives] == ["text"]
        assert shown == "See done"

    def test_fragment_longer_than_window_is_released(self):
        session = StreamSession(session_id="s1", max_buffer_chars=50)
        shown = session.feed('See [TEXT 1 100 200 "' + "a" * 60).cleaned_chunk
        assert shown.startswith("See [TEXT")

    def test_restart_drops_abandoned_attempt(self):
        session = StreamSession(session_id="s1")
        session.feed("[CIRCLE 1 300 300 20] then [HIGH")
        session.restart()

        result = session.feed("Fresh [CIRCLE 1 300 300 20]")
        assert result.cleaned_chunk == "Fresh "
        assert [d.type for d in result.new_directives] == ["circle"]
        assert len(session.emitted) == 1
        assert session.chunks_seen == 2


class TestChunkBufferRegistry:
    def test_new_session_starts_empty(self):
        buffer = ChunkBuffer()
        buffer.open("a").feed("[HIGHLIGHT 1 100 200 300 22]")
        closed = buffer.close("a")
        assert len(closed.emitted) == 1
        assert buffer.close("a") is None

        result = buffer.open("a").feed("[HIGHLIGHT 1 100 200 300 22]")
        assert len(result.new_directives) == 1

    def test_sessions_are_isolated(self):
        buffer = ChunkBuffer()
        a = buffer.open("a")
        b = buffer.open("b")
        a.feed("[HIGH")
        assert b.feed("LIGHT 1 100 200 300 22]").new_directives == []
        assert len(a.feed("LIGHT 1 100 200 300 22]").new_directives) == 1

    def test_open_uses_page_and_bounds(self):
        buffer = ChunkBuffer()
        session = buffer.open("a", current_page=0)
        assert session.current_page == 1
