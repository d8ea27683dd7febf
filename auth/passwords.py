"""
auth/passwords.py -- bcrypt password hashing.

Bcrypt is the right choice for low-entropy secrets (passwords) because its
cost factor makes brute-force expensive. The work factor comes from
Settings.bcrypt_rounds.

Using bcrypt directly rather than passlib[bcrypt]: passlib's internal wrap-bug
detection creates a password longer than 72 bytes, which bcrypt 4.x rejects.

Inputs are truncated to bcrypt's 72-byte limit on both hash and verify so the
two stay consistent.

Never log plaintext passwords or hashes.
"""

from __future__ import annotations

import logging
import secrets

import bcrypt
from pydantic import ValidationError

from auth.errors import ConfigurationError, HashingError
from core.config import get_settings

logger = logging.getLogger("capgate.auth.passwords")

_BCRYPT_MAX_BYTES = 72

# Prefix marking a stored value that no plaintext can ever match. bcrypt hashes
# always start with "$2", so the two can never collide.
UNUSABLE_PASSWORD_PREFIX = "!"


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def _configured_rounds() -> int:
    try:
        return get_settings().bcrypt_rounds
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc.error_count()} error(s)") from exc


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a bcrypt hash of the given plaintext password.

    A fresh salt is generated on every call, so hashing the same plaintext
    twice yields two different values that both verify.

    Raises HashingError if bcrypt or the system entropy source fails, and
    ConfigurationError if rounds is omitted and the settings are invalid.
    """
    cost = rounds if rounds is not None else _configured_rounds()
    try:
        return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=cost)).decode("utf-8")
    except (ValueError, OSError) as exc:
        logger.error("Password hashing failed: %s", type(exc).__name__)
        raise HashingError("Password hashing failed.") from exc


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext matches the hash. Never raises."""
    if not is_usable_password(hashed):
        return False
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def make_unusable_password() -> str:
    """Return a placeholder for accounts that must never log in with a password."""
    return UNUSABLE_PASSWORD_PREFIX + secrets.token_urlsafe(32)


def is_usable_password(hashed: str | None) -> bool:
    return bool(hashed) and not hashed.startswith(UNUSABLE_PASSWORD_PREFIX)


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. The authenticator verifies against this when a
# username does not exist, so response time does not reveal which usernames
# are registered.
DUMMY_HASH: str = hash_password("capgate_timing_dummy")
