"""Password hashing for minitask (bcrypt)."""

import logging
import os

import bcrypt
from dotenv import load_dotenv

from minitask.errors import ValidationFailed
from minitask.models.constants import MAX_PASSWORD_BYTES

load_dotenv()

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "10"))


def _encode(password: str) -> bytes:
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValidationFailed(
            f"Password must be at most {MAX_PASSWORD_BYTES} bytes",
            code="VALIDATION_FAILED",
            details={"field": "password"},
        )
    return encoded


def hash_password(password: str) -> str:
    """Hash a password with a fresh salt."""
    hashed = bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored hash. Malformed hashes never match."""
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, password_hash.encode("utf-8"))
    except ValueError as e:
        logger.warning(f"Password check failed on a malformed hash: {str(e)}")
        return False
