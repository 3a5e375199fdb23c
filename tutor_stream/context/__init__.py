"""Prompt assembly for tutoring turns.

This module provides:
- The tutor system prompt with directive syntax and page coordinates
- History windowing based on page text size
- The minimized payload used after a context-length failure
"""

from tutor_stream.context.tutor_prompt import (
    MINIMAL_SYSTEM_PROMPT,
    build_minimal_request,
    build_system_prompt,
    build_turn_request,
    history_window,
    prepare_messages,
)

__all__ = [
    "MINIMAL_SYSTEM_PROMPT",
    "build_minimal_request",
    "build_system_prompt",
    "build_turn_request",
    "history_window",
    "prepare_messages",
]
