"""Pytest configuration and fixtures for strmatch tests."""

import pytest

import strmatch


@pytest.fixture(autouse=True)
def reset_pattern_cache():
    """Start every test with an empty compiled-pattern cache."""
    strmatch.purge()
    yield
    strmatch.purge()


@pytest.fixture
def sample_input() -> bytes:
    return b"one twotwo threethreethree"
