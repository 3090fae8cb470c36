"""Test fixtures for ferry-pubsub."""

import pytest


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
