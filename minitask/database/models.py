"""SQLAlchemy database models for minitask."""

from datetime import datetime
from typing import Union, TypeVar, Type
from sqlalchemy import Column, String, Integer, Boolean, DateTime, JSON, ForeignKey

from minitask.database.database import Base
from minitask.models.task import TaskStatus, TaskPriority
from minitask.models.user import UserRole
from minitask.models.idempotency import IdempotencyState

T = TypeVar('T')


def enum_to_value(enum_obj: Union[str, T]) -> str:
    """Convert enum to string value (handles both enum and string).

    Args:
        enum_obj: Enum instance or string value

    Returns:
        String value of the enum, or the string itself if already a string
    """
    if hasattr(enum_obj, 'value'):
        return enum_obj.value
    return str(enum_obj)


def value_to_enum(value: str, enum_class: Type[T], default: T) -> T:
    """Convert string to enum with fallback to default.

    Args:
        value: String value to convert
        enum_class: Enum class to convert to
        default: Default enum value if conversion fails

    Returns:
        Enum instance, or default if conversion fails
    """
    if not value:
        return default
    try:
        return enum_class(value.lower())
    except (ValueError, AttributeError):
        return default


class UserDB(Base):
    """Database model for User."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Credentials
    email = Column(String(191), nullable=False, unique=True)
    password_hash = Column(String(191), nullable=False)

    # Profile and entitlements
    name = Column(String(191), nullable=True)
    role = Column(String(16), nullable=False, default=UserRole.USER.value)
    is_premium = Column(Boolean, nullable=False, default=False)
    subscription_expiry = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from minitask.models.user import User
        return User(
            id=self.id,
            email=self.email,
            name=self.name,
            role=value_to_enum(self.role, UserRole, UserRole.USER),
            is_premium=bool(self.is_premium),
            subscription_expiry=self.subscription_expiry,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class TaskDB(Base):
    """Database model for Task."""

    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)

    title = Column(String(191), nullable=False)
    description = Column(String(1000), nullable=True)
    status = Column(String(16), nullable=False, default=TaskStatus.PENDING.value, index=True)
    priority = Column(String(16), nullable=False, default=TaskPriority.MEDIUM.value, index=True)
    is_public = Column(Boolean, nullable=False, default=False, index=True)

    # Ownership
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_to = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from minitask.models.task import Task
        return Task(
            id=self.id,
            title=self.title,
            description=self.description,
            status=value_to_enum(self.status, TaskStatus, TaskStatus.PENDING),
            priority=value_to_enum(self.priority, TaskPriority, TaskPriority.MEDIUM),
            is_public=bool(self.is_public),
            owner_id=self.owner_id,
            assigned_to=self.assigned_to,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class IdempotencyKeyDB(Base):
    """Stored responses for idempotent create requests.

    One row per scoped key; the unique index is what serializes concurrent
    first attempts with the same key.
    """

    __tablename__ = "idempotency_keys"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scoped_key = Column(String(64), nullable=False, unique=True)

    caller_scope = Column(String(64), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    method = Column(String(10), nullable=False)
    endpoint = Column(String(500), nullable=False)

    # SHA-256 hex digest of the normalized request body
    request_hash = Column(String(64), nullable=False)

    state = Column(String(16), nullable=False, default=IdempotencyState.PENDING.value)
    response_status = Column(Integer, nullable=True)
    response_body = Column(JSON, nullable=True)
    attempt = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from minitask.models.idempotency import IdempotencyRecord
        return IdempotencyRecord(
            scoped_key=self.scoped_key,
            caller_scope=self.caller_scope,
            user_id=self.user_id,
            method=self.method,
            endpoint=self.endpoint,
            request_hash=self.request_hash,
            state=value_to_enum(self.state, IdempotencyState, IdempotencyState.PENDING),
            response_status=self.response_status,
            response_body=self.response_body,
            attempt=self.attempt,
            created_at=self.created_at,
            expires_at=self.expires_at,
        )


class RefreshTokenDB(Base):
    """Issued refresh tokens, tracked by their `jti` so logout can revoke them.

    Only the token id is stored, never the signed token.
    """

    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_id = Column(String(64), nullable=False, unique=True)
    revoked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
