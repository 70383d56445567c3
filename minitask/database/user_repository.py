"""Repository for User database operations."""

import logging
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session

from minitask.models.user import User, UserRole
from minitask.database.models import (
    IdempotencyKeyDB,
    RefreshTokenDB,
    TaskDB,
    UserDB,
    enum_to_value,
)

logger = logging.getLogger(__name__)


class UserRepository:
    """Repository for User database operations."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        user_db = self.db.query(UserDB).filter(UserDB.id == user_id).first()
        return user_db.to_pydantic() if user_db else None

    def get_by_email(self, email: str) -> Optional[User]:
        """Get user by email."""
        user_db = self.db.query(UserDB).filter(UserDB.email == email).first()
        return user_db.to_pydantic() if user_db else None

    def get_password_hash(self, email: str) -> Optional[str]:
        """Return the stored password hash for an email, or None if unknown."""
        row = self.db.query(UserDB.password_hash).filter(UserDB.email == email).first()
        return row[0] if row else None

    def exists(self, user_id: int) -> bool:
        return self.db.query(UserDB.id).filter(UserDB.id == user_id).first() is not None

    def list_all(self) -> List[User]:
        users_db = self.db.query(UserDB).order_by(UserDB.id).all()
        return [user_db.to_pydantic() for user_db in users_db]

    def create(
        self,
        email: str,
        password_hash: str,
        name: Optional[str],
        role: UserRole = UserRole.USER,
        is_premium: bool = False,
        subscription_expiry: Optional[datetime] = None,
    ) -> User:
        """Create a new user."""
        now = datetime.utcnow()
        user_db = UserDB(
            email=email,
            password_hash=password_hash,
            name=name,
            role=enum_to_value(role),
            is_premium=is_premium,
            subscription_expiry=subscription_expiry,
            created_at=now,
            updated_at=now,
        )
        try:
            self.db.add(user_db)
            self.db.commit()
            self.db.refresh(user_db)
            logger.debug(f"Created user {user_db.id}: {email}")
            return user_db.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create user {email}: {type(e).__name__}: {str(e)}")
            raise

    def update_profile(self, user_id: int, name: Optional[str]) -> Optional[User]:
        """Update the editable profile fields of a user."""
        user_db = self.db.query(UserDB).filter(UserDB.id == user_id).first()
        if not user_db:
            return None

        user_db.name = name
        user_db.updated_at = datetime.utcnow()
        try:
            self.db.commit()
            self.db.refresh(user_db)
            logger.debug(f"Updated user {user_id}")
            return user_db.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to update user {user_id}: {type(e).__name__}: {str(e)}")
            raise

    def update_entitlements(
        self,
        user_id: int,
        role: Optional[UserRole] = None,
        is_premium: Optional[bool] = None,
        subscription_expiry: Optional[datetime] = None,
    ) -> Optional[User]:
        """Change role or premium grant (used by operators and tests)."""
        user_db = self.db.query(UserDB).filter(UserDB.id == user_id).first()
        if not user_db:
            return None

        if role is not None:
            user_db.role = enum_to_value(role)
        if is_premium is not None:
            user_db.is_premium = is_premium
        if subscription_expiry is not None:
            user_db.subscription_expiry = subscription_expiry
        user_db.updated_at = datetime.utcnow()
        try:
            self.db.commit()
            self.db.refresh(user_db)
            return user_db.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to update entitlements for user {user_id}: {type(e).__name__}: {str(e)}")
            raise

    def delete_account(self, user_id: int) -> bool:
        """Delete a user and everything hanging off it in one transaction.

        Assignments to the user are cleared, owned tasks are deleted, and the
        user's refresh tokens and idempotency records are dropped.
        """
        user_db = self.db.query(UserDB).filter(UserDB.id == user_id).first()
        if not user_db:
            return False

        try:
            self.db.query(TaskDB).filter(TaskDB.assigned_to == user_id).update(
                {TaskDB.assigned_to: None}, synchronize_session=False
            )
            deleted_tasks = (
                self.db.query(TaskDB)
                .filter(TaskDB.owner_id == user_id)
                .delete(synchronize_session=False)
            )
            self.db.query(RefreshTokenDB).filter(RefreshTokenDB.user_id == user_id).delete(
                synchronize_session=False
            )
            self.db.query(IdempotencyKeyDB).filter(IdempotencyKeyDB.user_id == user_id).delete(
                synchronize_session=False
            )
            self.db.delete(user_db)
            self.db.commit()
            logger.debug(f"Deleted user {user_id} and {deleted_tasks} owned tasks")
            return True
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to delete user {user_id}: {type(e).__name__}: {str(e)}")
            raise
