"""Password hashing helpers backed by bcrypt."""

from __future__ import annotations

from functools import lru_cache

import bcrypt

# bcrypt only reads the first 72 bytes of the secret
_BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    """Return a salted bcrypt hash for ``password``."""
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Return ``True`` when ``password`` matches the stored hash."""
    try:
        return bcrypt.checkpw(_encode(password), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password("not-a-real-password")


def burn_verification(password: str) -> None:
    """Spend one bcrypt verification so unknown e-mails cost as much as wrong passwords."""
    verify_password(password, _dummy_hash())
