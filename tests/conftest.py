"""Pytest configuration and fixtures."""

import pytest

from paper_writer.config import get_settings


@pytest.fixture(autouse=True)
def fresh_settings():
    """Drop the cached Settings so env vars set by a test take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
