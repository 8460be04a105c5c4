"""
security helpers:
- Argon2 password hashing via argon2-cffi, with injectable cost parameters
- Password strength policy
- Random token generation and digests for tokens stored at rest
"""
from __future__ import annotations

import hashlib
import re
import secrets
import uuid

from argon2 import PasswordHasher as Argon2Hasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from services.exceptions import ValidationError

SPECIAL_CHARS = r"[!@#$%^&*(),.?\":{}|<>]"


class PasswordHasher:
    """
    One-way, deliberately expensive password hashing.

    Cost parameters come from configuration; the instance is created once by the
    application factory and handed to the services that need it.
    """

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4):
        self._ph = Argon2Hasher(time_cost=time_cost, memory_cost=memory_cost, parallelism=parallelism)
        # compared against when the user does not exist, so timing does not reveal it
        self._dummy_hash = self._ph.hash(secrets.token_hex(16))

    def hash(self, password: str) -> str:
        """Hash a plaintext password using Argon2
        """
        return self._ph.hash(password)

    def verify(self, password: str, password_hash: str | None) -> bool:
        """Verify a plaintext password against a stored hash (constant time).
        A missing hash still costs one verification.
        """
        try:
            return self._ph.verify(password_hash or self._dummy_hash, password) and password_hash is not None
        except VerifyMismatchError:
            return False
        except (VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, password_hash: str) -> bool:
        try:
            return self._ph.check_needs_rehash(password_hash)
        except InvalidHashError:
            return True


def validate_password_strength(password: str) -> None:
    """Raise ValidationError unless the password meets the policy."""
    if not isinstance(password, str) or len(password) < 8:
        raise ValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        raise ValidationError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise ValidationError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise ValidationError("Password must contain at least one number")
    if not re.search(SPECIAL_CHARS, password):
        raise ValidationError("Password must contain at least one special character")


def generate_token(nbytes: int = 32) -> str:
    """Hex-encoded random token with nbytes of entropy."""
    return secrets.token_hex(nbytes)


def generate_jti() -> str:
    """Generate a unique JTI (JWT ID).
    """
    return str(uuid.uuid4())


def token_digest(value: str) -> str:
    """sha256 hex digest, used for tokens and codes stored at rest."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
