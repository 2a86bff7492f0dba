import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from oidc_federation.database.tables.base_class import Base
from oidc_federation.main.config import Settings, reset_settings
from oidc_federation.sessions.session_store import SessionAttributeStore


class FakeRedis:
    """In-memory stand-in for the redis.asyncio hash commands the session store uses."""

    def __init__(self):
        self.hashes: dict[str, dict[str, str]] = {}
        self.ttls: dict[str, int] = {}

    async def hget(self, key: str, field: str) -> str | None:
        return self.hashes.get(key, {}).get(field)

    async def hgetall(self, key: str) -> dict[str, str]:
        return dict(self.hashes.get(key, {}))

    async def hset(
        self,
        key: str,
        field: str | None = None,
        value: str | None = None,
        mapping: dict[str, str] | None = None,
    ) -> int:
        bucket = self.hashes.setdefault(key, {})
        values = dict(mapping or {})
        if field is not None:
            values[field] = value
        bucket.update(values)
        return len(values)

    async def hdel(self, key: str, *fields: str) -> int:
        bucket = self.hashes.get(key, {})
        removed = 0
        for field in fields:
            if bucket.pop(field, None) is not None:
                removed += 1
        if key in self.hashes and not bucket:
            del self.hashes[key]
        return removed

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.hashes.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return key in self.hashes

    async def aclose(self) -> None:
        pass


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Explicit settings that do not depend on a .env file or the environment."""
    return Settings(
        oidc_issuers={},
        postgres_user="unit_test_user",
        postgres_host="localhost",
        postgres_password="unit_test_password",
        postgres_port=5432,
        postgres_db="unit_test_db",
        redis_host="localhost",
        redis_port=6379,
        public_origin="https://wiki.example.org",
        testing=True,
        dev=False,
    )


@pytest.fixture(autouse=True)
def reset_settings_after_test():
    """Reset settings after each test to prevent state leakage."""
    yield
    reset_settings()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def session_store(fake_redis) -> SessionAttributeStore:
    return SessionAttributeStore(fake_redis, session_id="browser-session", ttl_seconds=600)


@pytest.fixture
async def db_session():
    engine = create_async_engine("sqlite+aiosqlite://")
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session

    await engine.dispose()
