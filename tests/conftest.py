"""Pytest configuration and shared fixtures."""

import shutil
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from devcontext._store import ContentStore
from devcontext.content_manager import ContentManager
from devcontext.server.app import create_app
from devcontext.server.auth import create_access_token
from devcontext.server.config import ServerSettings
from devcontext.server.db import ServerStore
from devcontext.server.rate_limit import limiter


@pytest.fixture
def temp_dir():
    """Create a temporary directory removed after the test."""
    path = tempfile.mkdtemp()
    yield Path(path)
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def temp_store(temp_dir):
    """Create an open content store in a temporary directory."""
    store = ContentStore(temp_dir).open()
    yield store
    store.close()


@pytest.fixture
def temp_cm():
    """Create a temporary content manager.

    Each test gets its own data directory, so projects, settings and the
    sync queue start empty.
    """
    path = tempfile.mkdtemp()
    cm = ContentManager(base_path=path)
    yield cm
    cm.close()
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def populated_cm(temp_cm):
    """Create a content manager with sample data in the default project."""
    temp_cm.save_snippet(
        "const [count, setCount] = useState(0);\nuseEffect(() => { document.title = count; });",
        language="javascript",
        description="React counter with useEffect",
        source="https://chatgpt.com/c/123",
    )
    temp_cm.save_snippet(
        "def connect(url):\n    return create_engine(url, pool_size=5, max_overflow=10)",
        language="python",
        description="SQLAlchemy connection pooling",
        source="https://claude.ai/chat/456",
    )
    temp_cm.save_knowledge(
        "How do I fix TypeError: Cannot read properties of undefined?",
        "Check that the object exists before reading its properties, e.g. with optional chaining.",
        source="https://stackoverflow.com/q/789",
        tags="javascript,fix",
    )
    temp_cm.save_knowledge(
        "What is the difference between useMemo and useCallback in React?",
        "useMemo caches a computed value while useCallback caches a function reference.",
        source="https://claude.ai/chat/abc",
    )
    return temp_cm


@pytest.fixture
def server_settings():
    """Server settings with a fixed signing secret."""
    return ServerSettings(
        server_db=":memory:",
        jwt_secret="test-secret-key-that-is-long-enough-for-hs256",
        token_ttl_days=1,
    )


@pytest.fixture
def server_store():
    """In-memory server database."""
    store = ServerStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def server_app(server_settings, server_store):
    """Sync server app with fresh rate-limit counters."""
    limiter.reset()
    app = create_app(server_settings, server_store)
    yield app
    limiter.reset()


@pytest.fixture
def client(server_app):
    """HTTP test client for the sync server."""
    with TestClient(server_app) as test_client:
        yield test_client


@pytest.fixture
def make_user(server_store, server_settings):
    """Factory creating a server user and returning (user, auth headers)."""

    def factory(email="dev@example.com", expires_at=None):
        user = server_store.create_user(email, expires_at=expires_at)
        token = create_access_token(user["id"], server_settings)
        return user, {"Authorization": f"Bearer {token}"}

    return factory
