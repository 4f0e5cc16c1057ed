"""
Password hashing with bcrypt.

Verification always runs a bcrypt comparison, against a pre-computed dummy
hash when the identity has no hash, so response time does not reveal whether
an account exists.
"""

import bcrypt

# Pre-computed bcrypt hash for timing oracle prevention.
_DUMMY_BCRYPT_HASH = bcrypt.hashpw(b"dummy_password_for_timing_safety", bcrypt.gensalt(10)).decode()


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash password using bcrypt with the given cost factor."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(password: str, password_hash: str | None) -> bool:
    """
    Constant-time password check.

    Returns False (after a dummy comparison) when ``password_hash`` is None.
    """
    stored_hash = password_hash if password_hash is not None else _DUMMY_BCRYPT_HASH
    matches = bcrypt.checkpw(password.encode(), stored_hash.encode())
    return matches and password_hash is not None
