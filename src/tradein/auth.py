from __future__ import annotations

import hashlib
import hmac
import logging
import time
from collections import defaultdict
from typing import Any

from fastapi import HTTPException, Request, Security, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tradein.sessions import AdminSession, SessionStore

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


class AdminAuth:
    """Admin login against configured credentials, backed by a session store.

    The password is configured as a SHA-256 hex digest. Login is disabled
    when no digest is configured.
    """

    def __init__(self, username: str, password_sha256: str, sessions: SessionStore) -> None:
        self.username = username
        self._password_hash = password_sha256.strip().lower()
        self.sessions = sessions

    @property
    def enabled(self) -> bool:
        return bool(self.username and self._password_hash)

    def verify_credentials(self, username: str, password: str) -> bool:
        if not self.enabled:
            return False
        user_ok = hmac.compare_digest(username.encode(), self.username.encode())
        password_ok = hmac.compare_digest(hash_password(password), self._password_hash)
        return user_ok and password_ok

    async def login(self, username: str, password: str) -> AdminSession | None:
        if not self.verify_credentials(username, password):
            logger.warning("Rejected admin login for %r", username)
            return None
        session = await self.sessions.create(username)
        logger.info("Admin session created for %s", username)
        return session

    async def logout(self, session: AdminSession) -> None:
        await self.sessions.delete(session.token)

    async def __call__(
        self, credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    ) -> AdminSession:
        session = None
        if credentials is not None and credentials.credentials:
            session = await self.sessions.get(credentials.credentials)
        if session is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
            )
        return session


class RateLimiter:
    """In-memory sliding-window rate limiter per client IP."""

    def __init__(self, requests_per_minute: int = 60) -> None:
        self.rpm = requests_per_minute
        self._windows: dict[str, list[float]] = defaultdict(list)
        self._enabled = requests_per_minute > 0

    def _cleanup(self, key: str, now: float) -> None:
        cutoff = now - 60.0
        self._windows[key] = [t for t in self._windows[key] if t > cutoff]

    def check(self, client_ip: str) -> bool:
        if not self._enabled:
            return True
        now = time.monotonic()
        self._cleanup(client_ip, now)
        if len(self._windows[client_ip]) >= self.rpm:
            return False
        self._windows[client_ip].append(now)
        return True

    async def middleware(self, request: Request, call_next: Any) -> Any:
        if not self._enabled:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        if not self.check(client_ip):
            logger.warning("Rate limit exceeded for %s", client_ip)
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"detail": "Rate limit exceeded"},
            )
        return await call_next(request)
