"""Pytest configuration and fixtures for clinic_session tests."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from clinic_session.http import RequestPipeline
from clinic_session.state import SessionState
from clinic_session.storage import MemoryHintStore

BASE_URL = "https://clinic.test/api"


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


@pytest.fixture
def hint_store() -> MemoryHintStore:
    return MemoryHintStore()


@pytest.fixture
def state(hint_store: MemoryHintStore) -> SessionState:
    return SessionState(hint_store)


@pytest.fixture
def pipeline(mock_session: MagicMock, state: SessionState) -> RequestPipeline:
    return RequestPipeline(mock_session, BASE_URL, state)


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
    json_error: Exception | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call
        json_error: Exception raised by json(), e.g. for a non-JSON body

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status

    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = json_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


class AsyncIteratorMock:
    """Stand-in for a websockets connection yielding scripted frames."""

    def __init__(
        self,
        items: list[Any],
        *,
        raise_on_iter: BaseException | None = None,
        hold_open: bool = False,
    ) -> None:
        self._items = list(items)
        self._raise_on_iter = raise_on_iter
        self._hold_open = hold_open
        self.close = AsyncMock()
        self.send = AsyncMock()

    def __aiter__(self) -> AsyncIteratorMock:
        return self

    async def __anext__(self) -> Any:
        if self._items:
            return self._items.pop(0)
        if self._raise_on_iter is not None:
            raise self._raise_on_iter
        if self._hold_open:
            await asyncio.Event().wait()
        raise StopAsyncIteration
