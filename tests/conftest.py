"""Shared test fixtures."""

import os
import tempfile
from collections.abc import Iterator
from unittest.mock import AsyncMock, Mock

import pytest


# Settings are read once at import time of src.main
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "json")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="commentable-logs-"))

from cassandra.cluster import Session  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from src.core.context import clear_context  # noqa: E402
from src.main import app  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_context() -> Iterator[None]:
    """Keep request context from leaking between tests."""
    clear_context()
    yield
    clear_context()


@pytest.fixture
def mock_session():
    """Mock Cassandra session with aexecute() support."""
    session = Mock(spec=Session)
    session.prepare = Mock(return_value=Mock())
    session.aexecute = AsyncMock(return_value=[])
    return session


@pytest.fixture
def client() -> Iterator[TestClient]:
    """Test client without lifespan, so no Cassandra connection is attempted."""
    yield TestClient(app)
    for name in ("auth_service", "comment_service"):
        if hasattr(app.state, name):
            delattr(app.state, name)

