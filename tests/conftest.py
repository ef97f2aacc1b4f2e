import json
import os
import sqlite3
import tempfile

# Use a throwaway SQLite metadata database, must be set before querylens is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(
    tempfile.mkdtemp(), "querylens_test.db"
)
os.environ["RUN_MIGRATIONS"] = "false"

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from querylens.main import app
from querylens.core import models
from querylens.core.database import Base, enable_sqlite_foreign_keys, get_db
from querylens.core.repositories import DatabaseConnectionRepository
from querylens.api.deps import get_provider_client
from querylens.ai_feature.providers import ProviderClient

# Every word of this vocabulary is one embedding dimension
VOCABULARY = ["orders", "customers", "products", "total", "name", "price"]

ORDERS_DESCRIPTION = "orders table with id, customer_id, total"
CUSTOMERS_DESCRIPTION = "customers table with id, name, email"


def keyword_vector(text: str):
    """Deterministic stand-in for a real embedding model."""
    lowered = text.lower()
    return [float(lowered.count(word)) for word in VOCABULARY]


class FakeOpenAI:
    """
    httpx.MockTransport handler speaking the OpenAI embeddings and chat API.

    `chat_statuses` and `embedding_statuses` are consumed one status per
    request of their kind, 200 once empty.
    """

    def __init__(self, completion: str = "SELECT * FROM orders"):
        self.completion = completion
        self.chat_statuses = []
        self.embedding_statuses = []
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append((request.url.path, payload))

        if request.url.path.endswith("/embeddings"):
            if self.embedding_statuses:
                status_code = self.embedding_statuses.pop(0)
                if status_code != 200:
                    return httpx.Response(status_code, json={"error": {"message": "nope"}})
            data = [
                {"object": "embedding", "index": i, "embedding": keyword_vector(text)}
                for i, text in enumerate(payload["input"])
            ]
            return httpx.Response(200, json={"object": "list", "data": data})

        if request.url.path.endswith("/chat/completions"):
            if self.chat_statuses:
                status_code = self.chat_statuses.pop(0)
                if status_code != 200:
                    return httpx.Response(status_code, json={"error": {"message": "nope"}})
            return httpx.Response(
                200,
                json={
                    "choices": [
                        {
                            "index": 0,
                            "message": {"role": "assistant", "content": self.completion},
                            "finish_reason": "stop",
                        }
                    ]
                },
            )

        return httpx.Response(404, json={"error": {"message": "unknown path"}})

    def paths(self):
        return [path for path, _ in self.requests]


class SleepRecorder:
    """Injected instead of asyncio.sleep, remembers the back-off delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# Fresh metadata database for every test
@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'meta.db'}", echo=False)
    enable_sqlite_foreign_keys(test_engine)
    async with test_engine.begin() as conn:
        # Create all tables
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(engine):
    TestingSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with TestingSessionLocal() as session:
        yield session
        await session.rollback()


@pytest.fixture
def fake_openai():
    return FakeOpenAI()


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest_asyncio.fixture(scope="function")
async def provider(fake_openai, sleep_recorder):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_openai))
    client = ProviderClient(
        api_key="test-key",
        base_url="http://provider.test/v1",
        http_client=http_client,
        sleep=sleep_recorder,
    )
    yield client
    await http_client.aclose()


# Client
@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, provider: ProviderClient):
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_provider_client] = lambda: provider

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# SQLite file with an `orders` table, the target database of execution tests
@pytest.fixture
def orders_db(tmp_path):
    path = tmp_path / "shop.db"
    connection = sqlite3.connect(path)
    connection.execute(
        "CREATE TABLE orders (id INTEGER PRIMARY KEY, customer_id INTEGER, total REAL)"
    )
    connection.executemany(
        "INSERT INTO orders (id, customer_id, total) VALUES (?, ?, ?)",
        [(1, 10, 25.5), (2, 11, 99.0)],
    )
    connection.commit()
    connection.close()
    return str(path)


# Registered connection profile pointing at the orders database
@pytest_asyncio.fixture(scope="function")
async def shop_database(db_session: AsyncSession, orders_db):
    repository = DatabaseConnectionRepository(db_session)
    return await repository.save(
        models.DatabaseConnection(
            name="shop",
            database_type="sqlite",
            database_name=orders_db,
        )
    )
