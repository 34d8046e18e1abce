"""
Password hashing and verification.

Digests are bcrypt strings (``$2b$<cost>$<salt+hash>``), so the algorithm and cost travel with every stored hash
and old digests keep verifying after ``BCRYPT_ROUNDS`` changes.
"""

import bcrypt

from family_ledger.config import settings
from family_ledger.managers.logging_manager import get_logger
from family_ledger.utils.error_handling import ValidationError

logger = get_logger(prefix="[Auth Service Password]")

BCRYPT_MAX_BYTES = 72


def hash_password(plaintext: str) -> str:
    """
    Hash a password with a fresh random salt.

    Args:
        plaintext (str): The password as typed by the user.

    Returns:
        str: The self-describing bcrypt digest.

    Raises:
        ValidationError: If the password is longer than bcrypt can read.
    """
    encoded = plaintext.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        raise ValidationError("Password must be at most 72 bytes", "PASSWORD_TOO_LONG")
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plaintext: str, digest: str) -> bool:
    """Check a password against a stored digest; any malformed input verifies as False."""
    if not plaintext or not digest:
        return False
    encoded = plaintext.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, digest.encode("utf-8"))
    except (ValueError, TypeError) as e:
        logger.warning("Stored password digest could not be checked: %s", e)
        return False
