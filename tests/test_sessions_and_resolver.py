"""Tests for browser sessions and the session-then-bearer principal resolution."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from fastapi import Request, Response
import pytest

from family_ledger.config import settings
from family_ledger.models.auth_models import Principal
from family_ledger.routes.auth.dependencies import AuthResolver, BearerStrategy, SessionStrategy
from family_ledger.routes.auth.services.tokens import issue_bearer_token
from family_ledger.routes.auth.session_manager import BrowserSession, SessionManager

USER_DOC = {"_id": "user-1", "email": "foo@x.com", "name": "Foo"}


def _request(headers: Optional[List[Tuple[str, str]]] = None) -> Request:
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/",
            "query_string": b"",
            "headers": [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or [])],
            "client": ("203.0.113.7", 50000),
        }
    )


def _cookie_request(session_id: str, extra_headers: Optional[List[Tuple[str, str]]] = None) -> Request:
    return _request([("cookie", f"{settings.SESSION_COOKIE_NAME}={session_id}")] + (extra_headers or []))


@pytest.fixture
def sessions(fake_redis):
    return SessionManager(fake_redis)


class TestSessionManager:
    async def test_create_sets_cookie_and_stores_record(self, sessions, fake_redis):
        response = Response()

        session = await sessions.create_session(USER_DOC, _request([("user-agent", "pytest")]), response)

        cookie = response.headers["set-cookie"]
        assert f"{settings.SESSION_COOKIE_NAME}={session.session_id}" in cookie
        assert "httponly" in cookie.lower()
        assert "samesite=lax" in cookie.lower()
        key = f"{settings.ENV_PREFIX}:session:{session.session_id}"
        assert key in fake_redis.store
        assert fake_redis.ttls[key] > settings.SESSION_EXPIRE_MINUTES * 60 - 5
        assert session.ip_address == "203.0.113.7"
        assert session.user_agent == "pytest"

    async def test_cookie_resolves_to_principal(self, sessions):
        session = await sessions.create_session(USER_DOC, _request(), Response())

        principal = await sessions.get_session_user(_cookie_request(session.session_id))

        assert principal == Principal(id="user-1", email="foo@x.com", name="Foo")

    async def test_unknown_or_missing_cookie(self, sessions):
        assert await sessions.get_session_user(_request()) is None
        assert await sessions.get_session_user(_cookie_request("forged")) is None

    async def test_expired_session_is_removed(self, sessions, fake_redis):
        now = datetime.now(timezone.utc)
        stale = BrowserSession(
            session_id="stale",
            user_id="user-1",
            email="foo@x.com",
            name="Foo",
            created_at=now - timedelta(days=31),
            expires_at=now - timedelta(seconds=1),
        )
        key = f"{settings.ENV_PREFIX}:session:stale"
        fake_redis.store[key] = stale.model_dump_json()

        assert await sessions.get_session_user(_cookie_request("stale")) is None
        assert key not in fake_redis.store

    async def test_corrupt_record_is_discarded(self, sessions, fake_redis):
        key = f"{settings.ENV_PREFIX}:session:broken"
        fake_redis.store[key] = "{not json"

        assert await sessions.get_session_user(_cookie_request("broken")) is None
        assert key not in fake_redis.store

    async def test_destroy(self, sessions, fake_redis):
        session = await sessions.create_session(USER_DOC, _request(), Response())
        response = Response()

        assert await sessions.destroy_session(_cookie_request(session.session_id), response)
        assert fake_redis.store == {}
        assert "max-age=0" in response.headers["set-cookie"].lower()
        assert await sessions.destroy_session(_request(), Response()) is False


class _Fixed:
    def __init__(self, name: str, principal: Optional[Principal]):
        self.name = name
        self.principal = principal
        self.calls = 0

    async def resolve(self, request: Request) -> Optional[Principal]:
        self.calls += 1
        return self.principal


class TestAuthResolver:
    async def test_session_wins_over_bearer(self, make_principal):
        session = _Fixed("session", make_principal("from-session"))
        bearer = _Fixed("bearer", make_principal("from-token"))

        principal = await AuthResolver([session, bearer]).resolve(_request())

        assert principal.id == "from-session"
        assert bearer.calls == 0

    async def test_falls_through_to_bearer(self, make_principal):
        resolver = AuthResolver([_Fixed("session", None), _Fixed("bearer", make_principal("from-token"))])
        assert (await resolver.resolve(_request())).id == "from-token"

    async def test_nothing_resolves(self):
        assert await AuthResolver([_Fixed("session", None), _Fixed("bearer", None)]).resolve(_request()) is None

    async def test_real_strategies(self, sessions):
        session = await sessions.create_session(USER_DOC, _request(), Response())
        token = issue_bearer_token({"id": "user-2", "email": "bar@x.com", "name": "Bar"})
        resolver = AuthResolver([SessionStrategy(sessions), BearerStrategy()])

        both = _cookie_request(session.session_id, [("authorization", f"Bearer {token}")])
        assert (await resolver.resolve(both)).id == "user-1"

        stale_cookie = _cookie_request("gone", [("authorization", f"Bearer {token}")])
        assert (await resolver.resolve(stale_cookie)).id == "user-2"


class TestBearerStrategy:
    async def test_requires_bearer_scheme(self):
        token = issue_bearer_token({"id": "user-2", "email": "bar@x.com", "name": "Bar"})
        strategy = BearerStrategy()

        assert (await strategy.resolve(_request([("authorization", f"bearer {token}")]))).email == "bar@x.com"
        assert await strategy.resolve(_request([("authorization", f"Basic {token}")])) is None
        assert await strategy.resolve(_request([("authorization", "Bearer ")])) is None
        assert await strategy.resolve(_request([("authorization", "Bearer garbage")])) is None
