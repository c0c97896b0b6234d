"""
Password hashing.

Argon2id salted hashes. Hashing and verification are CPU-bound, so the async
helpers push them onto a worker thread instead of blocking the event loop.
"""

import asyncio
import logging
from typing import Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

logger = logging.getLogger("broker.identity")

_hasher = PasswordHasher(type=Type.ID)

# Compared against when no principal (or no credential) exists, so an unknown
# email costs the same as a wrong password.
_DUMMY_HASH = _hasher.hash("broker-dummy-password")


def hash_password(password: str) -> str:
    return _hasher.hash(password)


def verify_password(stored_hash: Optional[str], password: str) -> bool:
    """
    Check a password against a stored hash in constant time.

    A missing hash is verified against a dummy value and always fails.
    """
    target = stored_hash or _DUMMY_HASH
    try:
        matched = _hasher.verify(target, password)
    except (InvalidHash, VerifyMismatchError, VerificationError):
        return False
    return matched and stored_hash is not None


async def hash_password_async(password: str) -> str:
    return await asyncio.to_thread(hash_password, password)


async def verify_password_async(stored_hash: Optional[str], password: str) -> bool:
    return await asyncio.to_thread(verify_password, stored_hash, password)
