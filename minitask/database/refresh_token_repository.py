"""Repository for refresh token bookkeeping."""

import logging
from typing import Optional
from sqlalchemy.orm import Session

from minitask.database.models import RefreshTokenDB

logger = logging.getLogger(__name__)


class RefreshTokenRepository:
    """Tracks issued refresh tokens by id so they can be revoked."""

    def __init__(self, db: Session):
        self.db = db

    def add(self, user_id: int, token_id: str) -> None:
        try:
            self.db.add(RefreshTokenDB(user_id=user_id, token_id=token_id))
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to store refresh token for user {user_id}: {type(e).__name__}: {str(e)}")
            raise

    def is_active(self, token_id: str) -> bool:
        """True if the token id was issued and has not been revoked."""
        row: Optional[RefreshTokenDB] = (
            self.db.query(RefreshTokenDB).filter(RefreshTokenDB.token_id == token_id).first()
        )
        return bool(row and not row.revoked)

    def revoke(self, token_id: str) -> bool:
        row = self.db.query(RefreshTokenDB).filter(RefreshTokenDB.token_id == token_id).first()
        if not row:
            return False
        if row.revoked:
            return True

        try:
            row.revoked = True
            self.db.commit()
            logger.debug(f"Revoked refresh token {token_id[:8]}")
            return True
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to revoke refresh token: {type(e).__name__}: {str(e)}")
            raise
