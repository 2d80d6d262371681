"""Rate limiting tests with an in-memory stand-in for Redis.

Learn: RateLimitMiddleware only needs incr() and expire(), so the tests
swap get_redis for a small fake instead of requiring a Redis server.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import make_settings, user_payload
from ekonsulta.main import create_app
from ekonsulta.middleware import rate_limit
from ekonsulta.middleware.rate_limit import RATE_LIMIT_MESSAGE, buckets_from_settings


class FakeRedis:
    def __init__(self):
        self.counters: dict[str, int] = {}
        self.ttls: dict[str, int] = {}

    async def incr(self, key: str) -> int:
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    async def expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return True


class BrokenRedis:
    async def incr(self, key: str) -> int:
        raise ConnectionError("redis went away")


@pytest.fixture()
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(rate_limit, "get_redis", lambda: fake)
    return fake


@pytest.fixture()
def limited_client_factory(session_factory):
    """Build a client around an app with small limits."""
    from ekonsulta.db.engine import get_db

    def _factory(**overrides):
        app = create_app(make_settings(**overrides))

        async def override_get_db():
            async with session_factory() as session:
                yield session

        app.dependency_overrides[get_db] = override_get_db
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")

    return _factory


@pytest.mark.asyncio
async def test_general_limit(fake_redis, limited_client_factory):
    async with limited_client_factory(rate_limit_max=3) as client:
        for _ in range(3):
            r = await client.get("/api/v1/users")
            assert r.status_code == 401
        r = await client.get("/api/v1/users")
        assert r.status_code == 429
        assert r.json() == {"success": False, "error": RATE_LIMIT_MESSAGE}
        assert int(r.headers["Retry-After"]) >= 1


@pytest.mark.asyncio
async def test_headers_report_remaining(fake_redis, limited_client_factory):
    async with limited_client_factory(rate_limit_health_max=5) as client:
        r = await client.get("/api/v1/health")
        assert r.headers["RateLimit-Limit"] == "5"
        assert r.headers["RateLimit-Remaining"] == "4"
        assert 1 <= int(r.headers["RateLimit-Reset"]) <= 60


@pytest.mark.asyncio
async def test_auth_bucket_is_stricter(fake_redis, limited_client_factory):
    async with limited_client_factory(rate_limit_auth_max=2) as client:
        for i in range(2):
            r = await client.post("/api/v1/auth/register", json=user_payload(f"u{i}"))
            assert r.status_code == 201
        r = await client.post("/api/v1/auth/login", json={"username": "u0", "password": "x"})
        assert r.status_code == 429

        # Other buckets are counted separately
        r = await client.get("/api/v1/health")
        assert r.status_code == 200


@pytest.mark.asyncio
async def test_counter_gets_ttl(fake_redis, limited_client_factory):
    async with limited_client_factory() as client:
        await client.get("/api/v1/health")
    (key,) = fake_redis.counters
    assert key.startswith("ekonsulta:rl:")
    assert ":health:" in key
    assert fake_redis.ttls[key] == 120


@pytest.mark.asyncio
async def test_root_is_not_limited(fake_redis, limited_client_factory):
    async with limited_client_factory() as client:
        r = await client.get("/")
    assert r.status_code == 200
    assert r.json() == {"message": "Welcome to eKonsulta API", "documentation": "/api-docs"}
    assert fake_redis.counters == {}


@pytest.mark.asyncio
async def test_skipped_without_redis(limited_client_factory):
    async with limited_client_factory(rate_limit_health_max=1) as client:
        for _ in range(3):
            r = await client.get("/api/v1/health")
            assert r.status_code == 200
            assert "RateLimit-Limit" not in r.headers


@pytest.mark.asyncio
async def test_redis_errors_do_not_block(monkeypatch, limited_client_factory):
    monkeypatch.setattr(rate_limit, "get_redis", lambda: BrokenRedis())
    async with limited_client_factory() as client:
        r = await client.get("/api/v1/health")
    assert r.status_code == 200


def test_bucket_selection():
    middleware = rate_limit.RateLimitMiddleware(None, buckets_from_settings(make_settings()))
    assert middleware.bucket_for("/api/v1/health").name == "health"
    assert middleware.bucket_for("/api-docs").name == "docs"
    assert middleware.bucket_for("/openapi.json").name == "docs"
    assert middleware.bucket_for("/api/v1/auth/login").name == "auth"
    assert middleware.bucket_for("/api/v1/auth/me").name == "auth"
    assert middleware.bucket_for("/api/v1/users").name == "api"
    assert middleware.bucket_for("/") is None
