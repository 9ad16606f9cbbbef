"""
auth/passwords.py -- Salted password hashing for local accounts.

Every local account carries its own random salt. The stored hash covers
password + salt:

    bcrypt( base64( sha256( password + salt ) ) )

bcrypt only reads the first 72 bytes of its input, and a base64 salt alone is
44 characters, so password + salt is reduced to a fixed 44-byte digest before
bcrypt sees it. bcrypt still supplies its own cost factor and internal salt.

Layer rule: stdlib + bcrypt only.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

import bcrypt


def generate_salt(size: int = 32) -> str:
    """Return `size` cryptographically random bytes encoded as base64."""
    return base64.b64encode(secrets.token_bytes(size)).decode("ascii")


def _prehash(plain: str, salt: str) -> bytes:
    digest = hashlib.sha256((plain + salt).encode("utf-8")).digest()
    return base64.b64encode(digest)


def hash_password(plain: str, salt: str) -> str:
    """Return the bcrypt hash of password + salt."""
    return bcrypt.hashpw(_prehash(plain, salt), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, salt: str, hashed: str) -> bool:
    """Return True if password + salt matches the stored hash.

    Any malformed hash (empty string for directory accounts, legacy values)
    counts as a mismatch rather than an error.
    """
    try:
        return bcrypt.checkpw(_prehash(plain, salt), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash. Computed once at module load so an unknown
# username costs the same bcrypt round as a wrong password.
_DUMMY_SALT = generate_salt()
_DUMMY_HASH: str = hash_password("identitygate_timing_dummy", _DUMMY_SALT)


def burn_verification(plain: str) -> None:
    """Run one throwaway verification against the dummy hash."""
    verify_password(plain, _DUMMY_SALT, _DUMMY_HASH)
