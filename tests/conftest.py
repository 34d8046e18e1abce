"""
Pytest configuration for Family Ledger tests.

Provides an in-memory stand-in for the Motor collections the managers use, a Redis stand-in for sessions, and
fixtures that wire them into the application singletons. Environment variables are set before the package is
imported so settings validation passes without a config file.
"""

from contextlib import asynccontextmanager
import copy
import os
import tempfile
from types import SimpleNamespace
from typing import Any, Dict, Iterable, List, Optional, Tuple
from unittest.mock import AsyncMock

import pytest

os.environ.setdefault("SECRET_KEY", "test-signing-key-for-family-ledger-suite")
os.environ.setdefault("MONGODB_URL", "mongodb://localhost:27017")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="family_ledger_logs_"))
os.environ.setdefault("LOKI_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ENV_PREFIX", "test")

from pymongo.errors import DuplicateKeyError  # noqa: E402

from family_ledger.database import FAMILIES, FAMILY_MEMBERS, USERS  # noqa: E402
from family_ledger.models.auth_models import Principal  # noqa: E402


def _matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for key, expected in query.items():
        actual = doc.get(key)
        if isinstance(expected, dict) and any(op.startswith("$") for op in expected):
            for op, operand in expected.items():
                if op == "$in" and actual not in operand:
                    return False
                if op == "$ne" and actual == operand:
                    return False
        elif actual != expected:
            return False
    return True


def _project(doc: Dict[str, Any], projection: Optional[Dict[str, int]]) -> Dict[str, Any]:
    result = copy.deepcopy(doc)
    for field_name, include in (projection or {}).items():
        if not include:
            result.pop(field_name, None)
    return result


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = docs

    def sort(self, key_or_list, direction: Optional[int] = None) -> "FakeCursor":
        keys = key_or_list if isinstance(key_or_list, list) else [(key_or_list, direction or 1)]
        for field_name, field_direction in reversed(keys):
            self._docs.sort(key=lambda d: d.get(field_name), reverse=field_direction == -1)
        return self

    async def to_list(self, length: Optional[int] = None) -> List[Dict[str, Any]]:
        return self._docs if length is None else self._docs[:length]


class FakeCollection:
    """Enough of AsyncIOMotorCollection for the managers: equality, $in and $ne queries, $set and $inc updates."""

    def __init__(self, name: str, unique_keys: Iterable[Tuple[str, ...]] = ()):
        self.name = name
        self.docs: List[Dict[str, Any]] = []
        self.unique_keys = list(unique_keys)

    def _check_unique(self, doc: Dict[str, Any]) -> None:
        for key in self.unique_keys:
            value = tuple(doc.get(field_name) for field_name in key)
            if any(tuple(existing.get(field_name) for field_name in key) == value for existing in self.docs):
                raise DuplicateKeyError(
                    f"E11000 duplicate key error collection: {self.name} index: {'_'.join(key)}",
                    11000,
                    {"keyPattern": {field_name: 1 for field_name in key}, "keyValue": dict(zip(key, value))},
                )

    async def find_one(self, query: Dict[str, Any], projection=None, session=None) -> Optional[Dict[str, Any]]:
        for doc in self.docs:
            if _matches(doc, query):
                return _project(doc, projection)
        return None

    def find(self, query: Optional[Dict[str, Any]] = None, projection=None, session=None) -> FakeCursor:
        return FakeCursor([_project(doc, projection) for doc in self.docs if _matches(doc, query or {})])

    async def insert_one(self, doc: Dict[str, Any], session=None):
        self._check_unique(doc)
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def insert_many(self, docs: List[Dict[str, Any]], session=None):
        for doc in docs:
            await self.insert_one(doc)
        return SimpleNamespace(inserted_ids=[doc["_id"] for doc in docs])

    async def update_one(self, query: Dict[str, Any], update: Dict[str, Any], session=None):
        for doc in self.docs:
            if _matches(doc, query):
                for field_name, value in update.get("$set", {}).items():
                    doc[field_name] = copy.deepcopy(value)
                for field_name, value in update.get("$inc", {}).items():
                    doc[field_name] = doc.get(field_name, 0) + value
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def delete_one(self, query: Dict[str, Any], session=None):
        for index, doc in enumerate(self.docs):
            if _matches(doc, query):
                del self.docs[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def delete_many(self, query: Dict[str, Any], session=None):
        before = len(self.docs)
        self.docs = [doc for doc in self.docs if not _matches(doc, query)]
        return SimpleNamespace(deleted_count=before - len(self.docs))

    async def count_documents(self, query: Dict[str, Any], session=None) -> int:
        return sum(1 for doc in self.docs if _matches(doc, query))


class FakeDatabaseManager:
    """In-memory replacement for DatabaseManager on a deployment without transactions."""

    UNIQUE_KEYS = {
        USERS: [("email",)],
        FAMILIES: [("invite_code",)],
        FAMILY_MEMBERS: [("family_id", "user_id")],
    }

    def __init__(self):
        self.collections: Dict[str, FakeCollection] = {}
        self.transactions_supported = False

    def get_collection(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name, self.UNIQUE_KEYS.get(name, ()))
        return self.collections[name]

    @asynccontextmanager
    async def transaction(self):
        yield None

    def log_query_start(self, collection_name, operation, query=None) -> float:
        return 0.0

    def log_query_success(self, collection_name, operation, start_time, result_count=None, result_info=None):
        pass

    def log_query_error(self, collection_name, operation, start_time, error, query=None):
        pass


class FakeRedisManager:
    """Key/value store with the RedisManager commands sessions use; TTLs are recorded, not enforced."""

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        self.store[key] = value
        self.ttls[key] = max(int(ttl_seconds), 1)

    async def get(self, key: str) -> Optional[str]:
        return self.store.get(key)

    async def delete(self, key: str) -> None:
        self.store.pop(key, None)
        self.ttls.pop(key, None)

    async def close(self) -> None:
        pass


@pytest.fixture
def fake_db() -> FakeDatabaseManager:
    return FakeDatabaseManager()


@pytest.fixture
def fake_redis() -> FakeRedisManager:
    return FakeRedisManager()


@pytest.fixture
def make_principal():
    def _make(user_id: str, name: Optional[str] = None) -> Principal:
        return Principal(id=user_id, email=f"{user_id}@example.com", name=name or user_id.title())

    return _make


@pytest.fixture
def alice(make_principal) -> Principal:
    return make_principal("alice")


@pytest.fixture
def bob(make_principal) -> Principal:
    return make_principal("bob")


@pytest.fixture
def carol(make_principal) -> Principal:
    return make_principal("carol")


@pytest.fixture
def guard(fake_db):
    from family_ledger.managers.membership_guard import MembershipGuard

    return MembershipGuard(fake_db)


@pytest.fixture
def families(fake_db, guard):
    from family_ledger.managers.family_manager import FamilyManager

    return FamilyManager(fake_db, guard)


@pytest.fixture
def ledger(fake_db, guard):
    from family_ledger.managers.ledger_manager import LedgerManager

    return LedgerManager(fake_db, guard)


@pytest.fixture
def wired_app(fake_db, fake_redis, monkeypatch):
    """The FastAPI app with every singleton pointed at the in-memory stores and rate limiting disabled."""
    from family_ledger.main import app
    from family_ledger.managers.family_manager import family_manager
    from family_ledger.managers.ledger_manager import ledger_manager
    from family_ledger.managers.membership_guard import membership_guard
    from family_ledger.managers.security_manager import security_manager
    from family_ledger.managers.spending_limit_manager import spending_limit_manager
    from family_ledger.routes.auth.services import registration
    from family_ledger.routes.auth.session_manager import session_manager

    for manager in (family_manager, ledger_manager, membership_guard, spending_limit_manager):
        monkeypatch.setattr(manager, "db_manager", fake_db)
    monkeypatch.setattr(registration, "db_manager", fake_db)
    monkeypatch.setattr(session_manager, "redis_manager", fake_redis)
    monkeypatch.setattr(security_manager, "check_rate_limit", AsyncMock(return_value=None))
    return app


@pytest.fixture
def client(wired_app):
    from fastapi.testclient import TestClient

    # Not used as a context manager: the lifespan would try to reach MongoDB.
    return TestClient(wired_app)
