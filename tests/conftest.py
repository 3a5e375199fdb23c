"""Pytest configuration and fixtures."""

import os

import pytest

# Settings are read (and cached) when tutor_stream modules are imported, so
# the environment has to be in place before test modules are collected.
os.environ["ANTHROPIC_API_KEY"] = "sk-ant-test-key-0123456789"
os.environ["SUPABASE_URL"] = ""
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = ""
os.environ["TUTOR_ENV"] = "test"


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Start every test with full rate limit buckets."""
    from tutor_stream.core.rate_limiter import tutor_rate_limiter

    tutor_rate_limiter.reset()
    yield
    tutor_rate_limiter.reset()
