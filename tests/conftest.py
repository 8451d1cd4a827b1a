import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-process backends; no MongoDB or Redis needed
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("REALTIME_BACKEND", "memory")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("BILLING_WEBHOOK_SECRET", "whsec-test")
os.environ.setdefault("WORKER_TOKEN", "worker-test-token")

from app.core.config import Settings  # noqa: E402
from app.core.security import create_session_cookie  # noqa: E402
from app.deps import SESSION_COOKIE_NAME  # noqa: E402
from app.realtime.feed import MemoryChangeFeed  # noqa: E402
from app.services.registry import Services, build_services  # noqa: E402

WEBHOOK_SECRET = "whsec-test"
WORKER_TOKEN = os.environ["WORKER_TOKEN"]


def session_headers(owner_id: str, role: str = "user", email: str = "owner@example.com") -> dict[str, str]:
    cookie = create_session_cookie({"owner_id": owner_id, "email": email, "role": role})
    return {"Cookie": f"{SESSION_COOKIE_NAME}={cookie}"}


@pytest.fixture
def feed() -> MemoryChangeFeed:
    return MemoryChangeFeed()


@pytest_asyncio.fixture
async def services(feed: MemoryChangeFeed) -> AsyncGenerator[Services, None]:
    settings = Settings(
        store_backend="memory",
        realtime_backend="memory",
        billing_webhook_secret=WEBHOOK_SECRET,
    )
    svc = build_services(settings, feed=feed)
    await svc.start()
    yield svc
    await svc.stop()


@pytest_asyncio.fixture
async def client(services: Services) -> AsyncGenerator[AsyncClient, None]:
    from app.main import app
    app.state.services = services
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def login():
    return session_headers


@pytest.fixture
def worker_headers() -> dict[str, str]:
    return {"X-Worker-Token": WORKER_TOKEN}
