import json
import logging

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from tradein.auth import AdminAuth, RateLimiter, hash_password
from tradein.logging_config import CorrelationIdFilter, JSONFormatter, configure_logging, correlation_id
from tradein.sessions import InMemorySessionStore, RedisSessionStore


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


# ── Session Store Tests ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_in_memory_session_round_trip():
    store = InMemorySessionStore(ttl_seconds=60)
    session = await store.create("admin")
    assert len(session.token) >= 32
    assert await store.get(session.token) == session

    await store.delete(session.token)
    assert await store.get(session.token) is None


@pytest.mark.asyncio
async def test_in_memory_session_expires():
    clock = FakeClock()
    store = InMemorySessionStore(ttl_seconds=60, clock=clock)
    session = await store.create("admin")
    clock.now += 59
    assert await store.get(session.token) is not None
    clock.now += 1
    assert await store.get(session.token) is None


@pytest.mark.asyncio
async def test_session_tokens_are_unique():
    store = InMemorySessionStore()
    tokens = {(await store.create("admin")).token for _ in range(20)}
    assert len(tokens) == 20


@pytest.mark.asyncio
async def test_redis_session_store_fallback():
    store = RedisSessionStore(redis_url="redis://localhost:65535/0", ttl_seconds=60)
    await store.connect()
    assert await store.ping() is False

    session = await store.create("admin")
    assert (await store.get(session.token)).username == "admin"
    await store.delete(session.token)
    assert await store.get(session.token) is None
    await store.close()


class FailingRedis:
    async def set(self, *args, **kwargs):
        raise ConnectionError("redis went away")

    async def get(self, *args, **kwargs):
        raise ConnectionError("redis went away")

    async def delete(self, *args, **kwargs):
        raise ConnectionError("redis went away")

    async def aclose(self):
        return None


@pytest.mark.asyncio
async def test_redis_session_store_survives_redis_errors_after_connect():
    store = RedisSessionStore(redis_url="redis://localhost:65535/0", ttl_seconds=60)
    store._client = FailingRedis()

    session = await store.create("admin")
    assert (await store.get(session.token)).username == "admin"

    await store.delete(session.token)
    assert await store.get(session.token) is None
    await store.close()


# ── Admin Auth Tests ─────────────────────────────────────────────────


def _auth(password: str = "letmein") -> AdminAuth:
    return AdminAuth(username="admin", password_sha256=hash_password(password), sessions=InMemorySessionStore())


def test_verify_credentials():
    auth = _auth()
    assert auth.verify_credentials("admin", "letmein") is True
    assert auth.verify_credentials("admin", "wrong") is False
    assert auth.verify_credentials("root", "letmein") is False


def test_login_disabled_without_password_hash():
    auth = AdminAuth(username="admin", password_sha256="", sessions=InMemorySessionStore())
    assert auth.enabled is False
    assert auth.verify_credentials("admin", "") is False


def test_password_hash_is_case_insensitive():
    auth = AdminAuth(username="admin", password_sha256=hash_password("pw").upper(), sessions=InMemorySessionStore())
    assert auth.verify_credentials("admin", "pw") is True


@pytest.mark.asyncio
async def test_login_and_bearer_dependency():
    auth = _auth()
    assert await auth.login("admin", "nope") is None

    session = await auth.login("admin", "letmein")
    assert session is not None
    resolved = await auth(HTTPAuthorizationCredentials(scheme="Bearer", credentials=session.token))
    assert resolved.username == "admin"

    await auth.logout(session)
    with pytest.raises(HTTPException) as exc:
        await auth(HTTPAuthorizationCredentials(scheme="Bearer", credentials=session.token))
    assert exc.value.status_code == 401


@pytest.mark.asyncio
async def test_bearer_dependency_requires_header():
    with pytest.raises(HTTPException) as exc:
        await _auth()(None)
    assert exc.value.status_code == 401
    assert exc.value.detail == "Authentication required"


# ── Rate Limiter Tests ───────────────────────────────────────────────


def test_rate_limiter_blocks_over_limit():
    limiter = RateLimiter(requests_per_minute=3)
    for _ in range(3):
        assert limiter.check("10.0.0.1") is True
    assert limiter.check("10.0.0.1") is False
    assert limiter.check("10.0.0.2") is True


def test_rate_limiter_disabled():
    limiter = RateLimiter(requests_per_minute=0)
    assert all(limiter.check("any") for _ in range(500))


# ── Logging Tests ────────────────────────────────────────────────────


def test_json_formatter_includes_correlation_id():
    token = correlation_id.set("req-42")
    try:
        record = logging.LogRecord("test", logging.INFO, "", 0, "priced %s", ("1HG",), None)
        parsed = json.loads(JSONFormatter().format(record))
    finally:
        correlation_id.reset(token)
    assert parsed["message"] == "priced 1HG"
    assert parsed["level"] == "INFO"
    assert parsed["correlation_id"] == "req-42"
    assert "timestamp" in parsed


def test_correlation_filter_defaults_to_dash():
    record = logging.LogRecord("test", logging.INFO, "", 0, "msg", (), None)
    assert CorrelationIdFilter().filter(record) is True
    assert record.correlation_id == "-"


def test_configure_logging():
    configure_logging(level="DEBUG", fmt="text")
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
