"""Shared test fixtures for the CoverageX agent test suite."""

from __future__ import annotations

import os
from unittest.mock import MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("COVERAGEX_API_REF", "test-account-ref-456")
    os.environ.setdefault("CHATWOOT_API_KEY", "test-chatwoot-key-789")


@pytest.fixture
def mock_response():
    """Factory fixture for creating mock httpx responses."""

    def _make(data, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data
        mock.text = str(data)
        mock.content = str(data).encode()
        return mock

    return _make
