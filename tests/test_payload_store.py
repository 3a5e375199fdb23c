"""Tests for the prepared-stream payload store."""

from unittest.mock import patch

from tutor_stream.core.payload_store import PayloadStore


def test_take_consumes_payload():
    store = PayloadStore(ttl_seconds=60)
    store.set("a", {"x": 1})
    assert len(store) == 1
    assert store.take("a") == {"x": 1}
    assert store.take("a") is None
    assert len(store) == 0


def test_entries_expire():
    store = PayloadStore(ttl_seconds=120)
    with patch("tutor_stream.core.payload_store.time.monotonic", return_value=1000.0):
        store.set("a", "payload")
    with patch("tutor_stream.core.payload_store.time.monotonic", return_value=1119.0):
        assert len(store) == 1
    with patch("tutor_stream.core.payload_store.time.monotonic", return_value=1121.0):
        assert store.take("a") is None
        assert len(store) == 0


def test_set_replaces_existing_payload():
    store = PayloadStore()
    store.set("a", 1)
    store.set("a", 2)
    assert len(store) == 1
    assert store.take("a") == 2
