"""
User registration and credential checks.

This module owns the ``users`` collection: creating accounts (with their starter categories) and looking a user
up by email and password for the login endpoints.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError, PyMongoError

from family_ledger.database import CATEGORIES, USERS, db_manager
from family_ledger.managers.logging_manager import get_logger
from family_ledger.models.ledger_models import TransactionType
from family_ledger.routes.auth.services.password import hash_password, verify_password
from family_ledger.utils.error_handling import Conflict
from family_ledger.utils.logging_utils import log_error_with_context, log_performance, log_security_event
from family_ledger.utils.storage import amount_to_storage, new_id, utc_now

logger = get_logger(prefix="[Auth Service Registration]")

# Starter categories every new account receives.
DEFAULT_CATEGORIES: List[Dict[str, Any]] = [
    {
        "name": "Groceries",
        "icon": "shopping_cart",
        "type": TransactionType.EXPENSE,
        "budget_limit": Decimal("3000"),
        "color": "bg-green-100 text-green-700",
    },
    {
        "name": "Dining",
        "icon": "restaurant",
        "type": TransactionType.EXPENSE,
        "budget_limit": Decimal("2000"),
        "color": "bg-orange-100 text-orange-700",
    },
    {
        "name": "Transport",
        "icon": "directions_bus",
        "type": TransactionType.EXPENSE,
        "budget_limit": Decimal("1000"),
        "color": "bg-blue-100 text-blue-700",
    },
    {
        "name": "Bills",
        "icon": "receipt_long",
        "type": TransactionType.EXPENSE,
        "budget_limit": Decimal("1500"),
        "color": "bg-red-100 text-red-700",
    },
    {"name": "Other", "icon": "sell", "type": TransactionType.EXPENSE, "budget_limit": Decimal("500"), "color": None},
    {
        "name": "Salary",
        "icon": "work",
        "type": TransactionType.INCOME,
        "budget_limit": None,
        "color": "bg-primary/20 text-primary-dark",
    },
]


def normalize_email(email: str) -> str:
    return email.strip().lower()


@log_performance("register_user", log_args=False)
async def register_user(name: str, email: str, password: str) -> Dict[str, Any]:
    """
    Create an account and seed its default categories.

    Field shapes (name length, email syntax, password length) are checked by ``RegisterRequest`` before this runs.

    Args:
        name (str): Display name.
        email (str): Email address; stored lowercased.
        password (str): Plaintext password; only its bcrypt digest is stored.

    Returns:
        Dict[str, Any]: The inserted user document.

    Raises:
        Conflict: If the email is already registered.
        PyMongoError: If storage fails; nothing of the account is left behind.
    """
    email = normalize_email(email)
    users = db_manager.get_collection(USERS)

    start_time = db_manager.log_query_start(USERS, "find_one", {"email": email})
    existing = await users.find_one({"email": email})
    db_manager.log_query_success(USERS, "find_one", start_time, 1 if existing else 0)
    if existing:
        logger.info("Registration failed: email already exists (%s)", email)
        log_security_event(event_type="registration_duplicate_email", success=False, details={"email": email})
        raise Conflict("An account with this email already exists", "EMAIL_EXISTS")

    user_doc = {
        "_id": new_id(),
        "email": email,
        "name": name.strip(),
        "password_digest": hash_password(password),
        "created_at": utc_now(),
    }

    start_time = db_manager.log_query_start(USERS, "insert_one", {"email": email})
    try:
        await users.insert_one(user_doc)
    except DuplicateKeyError as e:
        # Lost a race with a concurrent registration for the same address.
        db_manager.log_query_error(USERS, "insert_one", start_time, e, {"email": email})
        raise Conflict("An account with this email already exists", "EMAIL_EXISTS") from e
    db_manager.log_query_success(USERS, "insert_one", start_time, 1)

    try:
        await seed_default_categories(user_doc["_id"])
    except PyMongoError:
        # No account without its starter categories: undo the user row and any partial seed.
        await db_manager.get_collection(CATEGORIES).delete_many({"owner_id": user_doc["_id"]})
        await users.delete_one({"_id": user_doc["_id"]})
        logger.error("Registration rolled back for %s: default categories could not be created", email)
        raise

    logger.info("User registered: %s", user_doc["_id"])
    log_security_event(event_type="registration", user_id=user_doc["_id"], success=True, details={"email": email})
    return user_doc


async def seed_default_categories(user_id: str) -> None:
    """Give a new account its starter categories."""
    now = utc_now()
    docs = [
        {
            "_id": new_id(),
            "owner_id": user_id,
            "name": category["name"],
            "icon": category["icon"],
            "type": category["type"].value,
            "budget_limit": amount_to_storage(category["budget_limit"]),
            "color": category["color"],
            "created_at": now,
        }
        for category in DEFAULT_CATEGORIES
    ]
    start_time = db_manager.log_query_start(CATEGORIES, "insert_many", {"owner_id": user_id})
    try:
        await db_manager.get_collection(CATEGORIES).insert_many(docs)
    except PyMongoError as e:
        db_manager.log_query_error(CATEGORIES, "insert_many", start_time, e, {"owner_id": user_id})
        log_error_with_context(e, context={"user_id": user_id}, operation="seed_default_categories")
        raise
    db_manager.log_query_success(CATEGORIES, "insert_many", start_time, len(docs))


async def authenticate_user(email: str, password: str) -> Optional[Dict[str, Any]]:
    """Return the user document when the email is known and the password matches, else None."""
    if not email or not password:
        return None
    email = normalize_email(email)
    start_time = db_manager.log_query_start(USERS, "find_one", {"email": email})
    user = await db_manager.get_collection(USERS).find_one({"email": email})
    db_manager.log_query_success(USERS, "find_one", start_time, 1 if user else 0)
    if not user or not user.get("password_digest"):
        return None
    if not verify_password(password, user["password_digest"]):
        return None
    return user
