"""
Browser session management backed by Redis.

A session cookie carries an opaque random id; the record it points to holds the user id plus the display fields
needed to build a principal without a database round trip. Records expire in Redis at the same instant the
cookie does.

Features:
- HTTP-only, SameSite=lax cookies (Secure outside DEBUG)
- Redis storage with TTL matching the session lifetime
- Expired or unreadable records are deleted on sight
"""

from datetime import datetime, timedelta, timezone
import secrets
from typing import Any, Dict, Optional

from fastapi import Request, Response
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from family_ledger.config import settings
from family_ledger.managers.logging_manager import get_logger
from family_ledger.managers.redis_manager import RedisManager, redis_manager
from family_ledger.managers.security_manager import security_manager
from family_ledger.models.auth_models import Principal

logger = get_logger(prefix="[Session Manager]")

SESSION_ID_BYTES = 32


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BrowserSession(BaseModel):
    """A browser session as stored in Redis."""

    session_id: str = Field(..., description="Unique session identifier")
    user_id: str = Field(..., description="User the session belongs to")
    email: str
    name: str
    created_at: datetime = Field(default_factory=_utcnow)
    expires_at: datetime
    last_accessed_at: datetime = Field(default_factory=_utcnow)
    ip_address: str = "unknown"
    user_agent: str = ""


class SessionManager:
    """Creates, resolves and destroys browser sessions."""

    def __init__(self, redis_manager_instance: Optional[RedisManager] = None):
        self.redis_manager = redis_manager_instance or redis_manager
        self.cookie_name = settings.SESSION_COOKIE_NAME
        self.logger = logger

    def _session_key(self, session_id: str) -> str:
        return f"{settings.ENV_PREFIX}:session:{session_id}"

    async def create_session(self, user: Dict[str, Any], request: Request, response: Response) -> BrowserSession:
        """
        Open a session for an authenticated user and set its cookie on the response.

        Args:
            user: User document (``_id``, ``email``, ``name``).
            request: Incoming request, for client metadata.
            response: Response that receives the cookie.
        """
        now = _utcnow()
        session = BrowserSession(
            session_id=secrets.token_urlsafe(SESSION_ID_BYTES),
            user_id=str(user["_id"]),
            email=user["email"],
            name=user["name"],
            created_at=now,
            expires_at=now + timedelta(minutes=settings.SESSION_EXPIRE_MINUTES),
            last_accessed_at=now,
            ip_address=security_manager.get_client_ip(request),
            user_agent=request.headers.get("user-agent", ""),
        )
        await self._store_session(session)

        response.set_cookie(
            key=self.cookie_name,
            value=session.session_id,
            max_age=settings.SESSION_EXPIRE_MINUTES * 60,
            httponly=True,
            secure=not settings.DEBUG,
            samesite="lax",
        )
        self.logger.info("Created browser session for user %s from IP %s", session.user_id, session.ip_address)
        return session

    async def get_session_user(self, request: Request) -> Optional[Principal]:
        """Resolve the session cookie to a principal, or None when absent, unknown or expired."""
        session_id = request.cookies.get(self.cookie_name)
        if not session_id:
            return None

        session = await self._get_session(session_id)
        if session is None:
            return None

        if _utcnow() >= session.expires_at:
            await self.redis_manager.delete(self._session_key(session_id))
            self.logger.info("Expired session removed for user %s", session.user_id)
            return None

        session.last_accessed_at = _utcnow()
        await self._store_session(session)
        return Principal(id=session.user_id, email=session.email, name=session.name)

    async def destroy_session(self, request: Request, response: Response) -> bool:
        """Delete the session record and clear the cookie. Returns False when there was no session cookie."""
        response.delete_cookie(key=self.cookie_name)
        session_id = request.cookies.get(self.cookie_name)
        if not session_id:
            return False
        await self.redis_manager.delete(self._session_key(session_id))
        self.logger.info("Destroyed browser session")
        return True

    async def _store_session(self, session: BrowserSession) -> None:
        ttl_seconds = int((session.expires_at - _utcnow()).total_seconds())
        await self.redis_manager.setex(self._session_key(session.session_id), ttl_seconds, session.model_dump_json())

    async def _get_session(self, session_id: str) -> Optional[BrowserSession]:
        raw = await self.redis_manager.get(self._session_key(session_id))
        if not raw:
            return None
        try:
            return BrowserSession.model_validate_json(raw)
        except PydanticValidationError as e:
            self.logger.error("Failed to parse session data, discarding it: %s", e)
            await self.redis_manager.delete(self._session_key(session_id))
            return None


session_manager = SessionManager()
