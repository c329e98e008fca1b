"""Shared fixtures for unit tests."""
import json
from http.cookies import SimpleCookie
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest


def build_response(
    status: int = 200,
    payload: Any = None,
    text: Optional[str] = None,
    headers: Optional[dict] = None,
    cookies: Optional[dict] = None,
) -> AsyncMock:
    """Mock aiohttp response usable as `async with session.request(...)`."""
    mock_response = AsyncMock()
    mock_response.status = status
    if text is None:
        text = json.dumps(payload) if payload is not None else ""
    mock_response.text.return_value = text
    mock_response.headers = headers or {}
    jar = SimpleCookie()
    for name, value in (cookies or {}).items():
        jar[name] = value
    mock_response.cookies = jar
    mock_response.__aenter__.return_value = mock_response
    return mock_response


@pytest.fixture
def make_response():
    """Factory for mocked aiohttp responses."""
    return build_response


@pytest.fixture
def mock_session():
    """Mock aiohttp ClientSession."""
    return MagicMock()
