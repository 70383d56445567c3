"""JWT token generation and validation for minitask.

Access and refresh tokens are signed with separate secrets, so a refresh token
can never be presented as an access token (and vice versa).
"""

import os
import uuid
import jwt
from datetime import datetime, timedelta
from typing import Optional, Dict, Tuple
from dotenv import load_dotenv

from minitask.errors import AuthenticationError
from minitask.models.user import User

load_dotenv()

# JWT configuration
JWT_ACCESS_SECRET = os.getenv("JWT_ACCESS_SECRET", "change-me-access-secret")
JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET", "change-me-refresh-secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_ACCESS_EXPIRES_MIN = int(os.getenv("JWT_ACCESS_EXPIRES_MIN", "15"))
JWT_REFRESH_EXPIRES_DAYS = int(os.getenv("JWT_REFRESH_EXPIRES_DAYS", "7"))


def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token for a user.

    Args:
        user: User the token is issued to
        expires_delta: Override for the configured lifetime

    Returns:
        Encoded JWT token string
    """
    now = datetime.utcnow()
    payload = {
        "sub": str(user.id),  # Subject (user ID); PyJWT requires a string
        "email": user.email,
        "role": user.role.value,
        "isPremium": user.is_premium,
        "type": "access",
        "iat": now,
        "exp": now + (expires_delta or timedelta(minutes=JWT_ACCESS_EXPIRES_MIN)),
    }
    return jwt.encode(payload, JWT_ACCESS_SECRET, algorithm=JWT_ALGORITHM)


def create_refresh_token(user_id: int, expires_delta: Optional[timedelta] = None) -> Tuple[str, str]:
    """Create a refresh token.

    Returns:
        (encoded token, token id). The token id must be stored so the token
        can be revoked later.
    """
    token_id = str(uuid.uuid4())
    now = datetime.utcnow()
    payload = {
        "sub": str(user_id),
        "jti": token_id,
        "type": "refresh",
        "iat": now,
        "exp": now + (expires_delta or timedelta(days=JWT_REFRESH_EXPIRES_DAYS)),
    }
    return jwt.encode(payload, JWT_REFRESH_SECRET, algorithm=JWT_ALGORITHM), token_id


def decode_access_token(token: str) -> Optional[Dict]:
    """Decode and validate a JWT access token.

    Args:
        token: JWT token string to decode

    Returns:
        Decoded token payload, or None if invalid or expired
    """
    try:
        payload = jwt.decode(token, JWT_ACCESS_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None
    if payload.get("type") != "access":
        return None
    return payload


def get_user_id_from_token(token: str) -> Optional[int]:
    """Extract the user ID from an access token, or None if it is unusable."""
    payload = decode_access_token(token)
    if not payload:
        return None
    try:
        return int(payload.get("sub"))
    except (TypeError, ValueError):
        return None


def decode_refresh_token(token: str) -> Dict:
    """Decode a refresh token.

    Unlike access tokens the caller needs to know why a refresh token was
    rejected, so failures are raised rather than returned as None.

    Raises:
        AuthenticationError: TOKEN_EXPIRED or INVALID_TOKEN
    """
    try:
        payload = jwt.decode(token, JWT_REFRESH_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Refresh token expired", code="TOKEN_EXPIRED")
    except jwt.InvalidTokenError as e:
        raise AuthenticationError(str(e) or "Invalid refresh token", code="INVALID_TOKEN")
    if payload.get("type") != "refresh" or not payload.get("jti"):
        raise AuthenticationError("Invalid refresh token", code="INVALID_TOKEN")
    return payload
