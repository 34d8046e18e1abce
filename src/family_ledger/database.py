"""Database module for Family Ledger."""

import asyncio
from contextlib import asynccontextmanager
import time
from typing import Any, AsyncIterator, Dict, Optional

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorClientSession,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from family_ledger.config import settings
from family_ledger.managers.logging_manager import get_logger

db_logger = get_logger(prefix="[DATABASE]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")
health_logger = get_logger(prefix="[DB_HEALTH]")

# Collection names
USERS = "users"
FAMILIES = "families"
FAMILY_MEMBERS = "family_members"
CATEGORIES = "categories"
TRANSACTIONS = "transactions"
FAMILY_CATEGORIES = "family_categories"
FAMILY_TRANSACTIONS = "family_transactions"
SPENDING_LIMITS = "spending_limits"

SENSITIVE_QUERY_FIELDS = {"password", "password_digest", "token", "secret", "receipt_image"}


class DatabaseManager:
    """MongoDB database manager using Motor (async MongoDB driver)"""

    def __init__(self):
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self._connection_retries = 3
        # Set after connect(); True when connected to a replica set or mongos
        self.transactions_supported: Optional[bool] = None

    def _connection_string(self) -> str:
        if settings.MONGODB_USERNAME and settings.MONGODB_PASSWORD:
            password = settings.MONGODB_PASSWORD.get_secret_value()
            db_logger.debug("Using authenticated connection to MongoDB")
            return f"mongodb://{settings.MONGODB_USERNAME}:{password}@{settings.MONGODB_URL.replace('mongodb://', '')}"
        return settings.MONGODB_URL

    async def connect(self):
        """Connect to MongoDB with retry logic"""
        start_time = time.time()
        db_logger.info("Starting MongoDB connection process")

        for attempt in range(self._connection_retries):
            attempt_start = time.time()
            try:
                db_logger.info("Connection attempt %d/%d to MongoDB", attempt + 1, self._connection_retries)
                self.client = AsyncIOMotorClient(
                    self._connection_string(),
                    serverSelectionTimeoutMS=settings.MONGODB_SERVER_SELECTION_TIMEOUT,
                    connectTimeoutMS=settings.MONGODB_CONNECTION_TIMEOUT,
                    maxPoolSize=50,
                    minPoolSize=5,
                    tz_aware=True,
                )
                self.database = self.client[settings.MONGODB_DATABASE]

                ping_start = time.time()
                await self.client.admin.command("ping")
                ping_duration = time.time() - ping_start

                self.transactions_supported = await self._detect_transaction_support()

                perf_logger.info(
                    "MongoDB connection established in %.3fs (ping: %.3fs)", time.time() - start_time, ping_duration
                )
                db_logger.info(
                    "Connected to MongoDB database: %s (transactions supported: %s)",
                    settings.MONGODB_DATABASE,
                    self.transactions_supported,
                )
                return

            except (ServerSelectionTimeoutError, ConnectionFailure) as e:
                perf_logger.warning("Connection attempt %d failed after %.3fs", attempt + 1, time.time() - attempt_start)
                db_logger.warning(
                    "Failed to connect to MongoDB (attempt %d/%d): %s", attempt + 1, self._connection_retries, e
                )
                if attempt == self._connection_retries - 1:
                    db_logger.error("All connection attempts failed after %.3fs", time.time() - start_time)
                    raise

                backoff_time = 2**attempt
                db_logger.info("Waiting %.1fs before retry (exponential backoff)", backoff_time)
                await asyncio.sleep(backoff_time)

    async def _detect_transaction_support(self) -> bool:
        """Replica set members report setName; mongos reports msg == 'isdbgrid'."""
        try:
            hello = await self.client.admin.command({"hello": 1})
        except PyMongoError as e:
            db_logger.warning("Could not detect transaction support, assuming none: %s", e)
            return False
        return bool(hello.get("setName") or hello.get("msg") == "isdbgrid")

    async def disconnect(self):
        """Disconnect from MongoDB"""
        if self.client is None:
            db_logger.warning("Disconnect called but no active MongoDB connection found")
            return
        self.client.close()
        self.client = None
        self.database = None
        db_logger.info("Successfully disconnected from MongoDB")

    async def health_check(self) -> bool:
        """Check database connection health"""
        if self.client is None:
            health_logger.warning("Health check failed: No database client available")
            return False
        start_time = time.time()
        try:
            await self.client.admin.command("ping")
        except (PyMongoError, ConnectionError, TimeoutError) as e:
            health_logger.error("Database health check failed after %.3fs: %s", time.time() - start_time, e)
            return False
        perf_logger.debug("Database health check completed in %.3fs", time.time() - start_time)
        return True

    def get_collection(self, collection_name: str) -> AsyncIOMotorCollection:
        """Get a collection from the database"""
        if self.database is None:
            db_logger.error("Cannot get collection '%s': Database not connected", collection_name)
            raise RuntimeError("Database not connected")
        return self.database[collection_name]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Optional[AsyncIOMotorClientSession]]:
        """Yield a session with a started transaction, or None when the deployment cannot run transactions.

        Callers pass the yielded value as ``session=`` to every write; an exception inside the block aborts.
        """
        if not self.transactions_supported or self.client is None:
            yield None
            return
        async with await self.client.start_session() as session:
            async with session.start_transaction():
                yield session

    async def create_indexes(self):
        """Create database indexes; the unique ones are the real guards behind friendly pre-checks."""
        start_time = time.time()
        db_logger.info("Starting database index creation process")

        index_plan = [
            (USERS, "email", {"unique": True, "name": "email_unique"}),
            (FAMILIES, "invite_code", {"unique": True, "name": "invite_code_unique"}),
            (FAMILIES, "created_by", {}),
            (
                FAMILY_MEMBERS,
                [("family_id", ASCENDING), ("user_id", ASCENDING)],
                {"unique": True, "name": "family_user_unique"},
            ),
            (FAMILY_MEMBERS, "user_id", {}),
            (CATEGORIES, [("owner_id", ASCENDING), ("type", ASCENDING)], {}),
            (TRANSACTIONS, [("owner_id", ASCENDING), ("date", DESCENDING)], {}),
            (TRANSACTIONS, "category_id", {}),
            (FAMILY_CATEGORIES, [("family_id", ASCENDING), ("type", ASCENDING)], {}),
            (FAMILY_TRANSACTIONS, [("family_id", ASCENDING), ("created_at", DESCENDING)], {}),
            (FAMILY_TRANSACTIONS, "category_id", {}),
            (FAMILY_TRANSACTIONS, "user_id", {}),
            (SPENDING_LIMITS, "family_id", {}),
        ]
        for collection_name, spec, options in index_plan:
            await self._create_index_if_not_exists(self.get_collection(collection_name), spec, options)

        perf_logger.info("Database index creation completed in %.3fs", time.time() - start_time)

    async def _create_index_if_not_exists(self, collection: AsyncIOMotorCollection, field_spec: Any, options: Dict[str, Any]):
        """Create an index if it doesn't already exist"""
        try:
            await collection.create_index(field_spec, **options)
            db_logger.debug("Successfully created/ensured index: %s", field_spec)
        except PyMongoError as e:
            db_logger.warning("Could not create/ensure index '%s': %s", field_spec, e)

    # Database operation logging utilities
    def log_query_start(self, collection_name: str, operation: str, query: Optional[Dict] = None) -> float:
        """Log the start of a database query and return start time for performance tracking"""
        db_logger.debug(
            "Starting %s operation on collection '%s' - Query: %s",
            operation,
            collection_name,
            self._sanitize_query_for_logging(query) if query else {},
        )
        return time.time()

    def log_query_success(
        self,
        collection_name: str,
        operation: str,
        start_time: float,
        result_count: Optional[int] = None,
        result_info: Optional[str] = None,
    ):
        """Log successful completion of a database query with performance metrics"""
        duration = time.time() - start_time
        if result_count is not None:
            perf_logger.debug(
                "%s on '%s' completed in %.3fs - %d records", operation, collection_name, duration, result_count
            )
        else:
            perf_logger.debug("%s on '%s' completed in %.3fs", operation, collection_name, duration)
        if result_info:
            db_logger.debug("Additional result info for %s on '%s': %s", operation, collection_name, result_info)

    def log_query_error(
        self, collection_name: str, operation: str, start_time: float, error: Exception, query: Optional[Dict] = None
    ):
        """Log database query errors with context and performance metrics"""
        duration = time.time() - start_time
        perf_logger.error("%s on '%s' failed after %.3fs", operation, collection_name, duration)
        db_logger.error(
            "%s operation failed on collection '%s' after %.3fs - Error: %s, Query: %s",
            operation,
            collection_name,
            duration,
            error,
            self._sanitize_query_for_logging(query) if query else {},
        )

    def _sanitize_query_for_logging(self, query: Dict[str, Any]) -> Dict[str, Any]:
        """Sanitize database queries for safe logging by removing sensitive data"""
        if not isinstance(query, dict):
            return {}
        sanitized = {}
        for key, value in query.items():
            if any(field in key.lower() for field in SENSITIVE_QUERY_FIELDS):
                sanitized[key] = "<REDACTED>"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_query_for_logging(value)
            else:
                sanitized[key] = value
        return sanitized


db_manager = DatabaseManager()
