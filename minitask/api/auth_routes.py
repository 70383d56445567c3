"""Authentication endpoints: register, login, refresh, logout."""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, Response
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from minitask.api.auth_models import LoginRequest, LogoutRequest, RefreshRequest, RegisterRequest
from minitask.auth.jwt import create_access_token, create_refresh_token, decode_refresh_token
from minitask.auth.passwords import hash_password, verify_password
from minitask.database.database import get_db
from minitask.database.refresh_token_repository import RefreshTokenRepository
from minitask.database.user_repository import UserRepository
from minitask.errors import AuthenticationError, AuthorizationError, ValidationFailed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def _email_taken() -> ValidationFailed:
    return ValidationFailed("Email already registered", code="EMAIL_TAKEN")


def _invalid_credentials() -> AuthenticationError:
    return AuthenticationError("Invalid email or password", code="INVALID_CREDENTIALS")


@router.post("/register", status_code=201)
def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """Create an account with the `user` role."""
    user_repo = UserRepository(db)
    email = request.email.strip().lower()
    if user_repo.get_by_email(email):
        raise _email_taken()

    password_hash = hash_password(request.password)
    try:
        user = user_repo.create(email=email, password_hash=password_hash, name=request.name)
    except IntegrityError:
        # Lost a race with a concurrent registration for the same email.
        raise _email_taken()

    logger.info(f"Registered user {user.id}")
    return {"message": "User registered", "user": {"id": user.id, "email": user.email}}


@router.post("/login")
def login(request: LoginRequest, db: Session = Depends(get_db)):
    """Exchange credentials for an access token and a refresh token."""
    user_repo = UserRepository(db)
    email = request.email.strip().lower()
    password_hash = user_repo.get_password_hash(email)
    if not password_hash or not verify_password(request.password, password_hash):
        raise _invalid_credentials()

    user = user_repo.get_by_email(email)
    refresh_token, token_id = create_refresh_token(user.id)
    RefreshTokenRepository(db).add(user.id, token_id)
    return {"accessToken": create_access_token(user), "refreshToken": refresh_token}


@router.post("/refresh")
def refresh(request: Optional[RefreshRequest] = Body(None), db: Session = Depends(get_db)):
    """Issue a new access token for a valid, unrevoked refresh token."""
    token = request.refreshToken if request else None
    if not token:
        raise ValidationFailed("Missing refresh token", code="NO_TOKEN")

    payload = decode_refresh_token(token)
    if not RefreshTokenRepository(db).is_active(payload["jti"]):
        raise AuthenticationError("Refresh token invalid", code="TOKEN_REVOKED")

    user = UserRepository(db).get(int(payload["sub"]))
    if user is None:
        raise AuthenticationError("Refresh token invalid", code="INVALID_TOKEN")
    return {"accessToken": create_access_token(user)}


@router.post("/logout")
def logout(
    request: Optional[LogoutRequest] = Body(None),
    x_refresh_token: Optional[str] = Header(None, alias="X-Refresh-Token"),
    db: Session = Depends(get_db),
):
    """Revoke a refresh token, sent either in the body or the X-Refresh-Token header."""
    token = (request.refreshToken if request else None) or x_refresh_token
    if not token:
        raise ValidationFailed(
            "refreshToken is required in body or X-Refresh-Token header",
            code="MISSING_REFRESH_TOKEN",
        )

    try:
        payload = decode_refresh_token(token)
    except AuthenticationError as e:
        raise AuthorizationError(e.message, code="INVALID_TOKEN")

    RefreshTokenRepository(db).revoke(payload["jti"])
    return {"ok": True}
