from __future__ import annotations

import asyncio
import json
import logging
import secrets
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdminSession:
    token: str
    username: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class SessionStore(Protocol):
    async def connect(self) -> None: ...
    async def close(self) -> None: ...
    async def ping(self) -> bool: ...
    async def create(self, username: str) -> AdminSession: ...
    async def get(self, token: str) -> AdminSession | None: ...
    async def delete(self, token: str) -> None: ...


def new_session_token() -> str:
    return secrets.token_urlsafe(32)


class InMemorySessionStore:
    """Process-local admin sessions. Expired entries are dropped on read."""

    def __init__(self, ttl_seconds: int = 86_400, clock: Callable[[], float] = time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, AdminSession] = {}

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        self._sessions.clear()

    async def ping(self) -> bool:
        return True

    async def create(self, username: str) -> AdminSession:
        session = AdminSession(
            token=new_session_token(),
            username=username,
            expires_at=self._clock() + self.ttl_seconds,
        )
        self._sessions[session.token] = session
        return session

    async def get(self, token: str) -> AdminSession | None:
        session = self._sessions.get(token)
        if session is None:
            return None
        if session.is_expired(self._clock()):
            self._sessions.pop(token, None)
            return None
        return session

    async def delete(self, token: str) -> None:
        self._sessions.pop(token, None)


class RedisSessionStore:
    """Admin sessions in Redis with a key TTL.

    Uses an in-memory store when Redis cannot be reached at connect time,
    and for any session whose Redis write fails later on.
    """

    def __init__(self, redis_url: str, ttl_seconds: int = 86_400, namespace: str = "tradein:session") -> None:
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.namespace = namespace
        self._client: Any = None
        self._fallback = InMemorySessionStore(ttl_seconds=ttl_seconds)

    def _build_key(self, token: str) -> str:
        return f"{self.namespace}:{token}"

    async def connect(self) -> None:
        self._client = redis.from_url(self.redis_url, decode_responses=True)
        try:
            await asyncio.wait_for(self._client.ping(), timeout=0.75)
        except Exception as exc:
            logger.warning("Redis unavailable, keeping admin sessions in memory: %s", exc)
            await self._client.aclose()
            self._client = None

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
        await self._fallback.close()

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await asyncio.wait_for(self._client.ping(), timeout=0.75))
        except Exception:
            return False

    async def create(self, username: str) -> AdminSession:
        if self._client is None:
            return await self._fallback.create(username)
        session = AdminSession(
            token=new_session_token(),
            username=username,
            expires_at=time.time() + self.ttl_seconds,
        )
        try:
            await self._client.set(self._build_key(session.token), json.dumps(asdict(session)), ex=self.ttl_seconds)
        except Exception as exc:
            logger.warning("Session write failed, keeping session in memory: %s", exc)
            return await self._fallback.create(username)
        return session

    async def get(self, token: str) -> AdminSession | None:
        if self._client is None:
            return await self._fallback.get(token)
        try:
            raw = await self._client.get(self._build_key(token))
        except Exception as exc:
            logger.warning("Session lookup failed: %s", exc)
            raw = None
        if raw is None:
            return await self._fallback.get(token)
        session = AdminSession(**json.loads(raw))
        return None if session.is_expired(time.time()) else session

    async def delete(self, token: str) -> None:
        await self._fallback.delete(token)
        if self._client is None:
            return
        try:
            await self._client.delete(self._build_key(token))
        except Exception as exc:
            logger.warning("Session delete failed: %s", exc)
