"""
Invite code generation and validation.

Codes look like ``ABC-DEFG-HJK``: three groups of 3, 4 and 3 symbols drawn from a 32-symbol alphabet that leaves
out characters people confuse when reading a code aloud or copying it (0/O, 1/I/L).
"""

import re
import secrets

INVITE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
INVITE_CODE_SEGMENTS = (3, 4, 3)
INVITE_CODE_PATTERN = re.compile(r"^[A-Z2-9]{3}-[A-Z2-9]{4}-[A-Z2-9]{3}$")


def generate_invite_code() -> str:
    """Draw a fresh code from a cryptographically secure source."""
    return "-".join(
        "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(length)) for length in INVITE_CODE_SEGMENTS
    )


def normalize_invite_code(code: str) -> str:
    return (code or "").strip().upper()


def is_valid_invite_code(code: str) -> bool:
    """Check the shape of a code after case normalisation; no storage lookup happens here."""
    return bool(INVITE_CODE_PATTERN.match(normalize_invite_code(code)))
