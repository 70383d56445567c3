"""Repository for idempotency records.

Every write here is a single conditional statement so that two requests
racing on the same scoped key cannot both win.
"""

import logging
from datetime import datetime
from typing import Any, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from minitask.models.idempotency import IdempotencyRecord, IdempotencyState
from minitask.database.models import IdempotencyKeyDB

logger = logging.getLogger(__name__)


class IdempotencyRepository:
    """Repository for IdempotencyRecord database operations."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, scoped_key: str) -> Optional[IdempotencyRecord]:
        row = self.db.query(IdempotencyKeyDB).filter(IdempotencyKeyDB.scoped_key == scoped_key).first()
        if row is not None:
            # Another request may have changed the row since this session last saw it.
            self.db.refresh(row)
        return row.to_pydantic() if row else None

    def reserve(self, record: IdempotencyRecord) -> bool:
        """Insert a pending record. Returns False if the scoped key already exists."""
        row = IdempotencyKeyDB(
            scoped_key=record.scoped_key,
            caller_scope=record.caller_scope,
            user_id=record.user_id,
            method=record.method,
            endpoint=record.endpoint,
            request_hash=record.request_hash,
            state=IdempotencyState.PENDING.value,
            attempt=record.attempt,
            created_at=record.created_at,
            expires_at=record.expires_at,
        )
        try:
            self.db.add(row)
            self.db.commit()
            return True
        except IntegrityError:
            self.db.rollback()
            logger.debug(f"Idempotency key {record.scoped_key[:12]} reserved concurrently")
            return False
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to reserve idempotency key: {type(e).__name__}: {str(e)}")
            raise

    def take_over(
        self,
        scoped_key: str,
        expected_attempt: int,
        request_hash: str,
        now: datetime,
        expires_at: datetime,
    ) -> bool:
        """Re-reserve an expired record, provided nobody else took it over first."""
        try:
            affected = (
                self.db.query(IdempotencyKeyDB)
                .filter(
                    IdempotencyKeyDB.scoped_key == scoped_key,
                    IdempotencyKeyDB.attempt == expected_attempt,
                    IdempotencyKeyDB.expires_at <= now,
                )
                .update(
                    {
                        IdempotencyKeyDB.request_hash: request_hash,
                        IdempotencyKeyDB.state: IdempotencyState.PENDING.value,
                        IdempotencyKeyDB.response_status: None,
                        IdempotencyKeyDB.response_body: None,
                        IdempotencyKeyDB.attempt: expected_attempt + 1,
                        IdempotencyKeyDB.created_at: now,
                        IdempotencyKeyDB.expires_at: expires_at,
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
            return affected == 1
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to take over idempotency key: {type(e).__name__}: {str(e)}")
            raise

    def complete(
        self,
        scoped_key: str,
        request_hash: str,
        response_status: int,
        response_body: Any,
        expires_at: datetime,
    ) -> bool:
        """Store the response on a pending reservation."""
        try:
            affected = (
                self.db.query(IdempotencyKeyDB)
                .filter(
                    IdempotencyKeyDB.scoped_key == scoped_key,
                    IdempotencyKeyDB.request_hash == request_hash,
                    IdempotencyKeyDB.state == IdempotencyState.PENDING.value,
                )
                .update(
                    {
                        IdempotencyKeyDB.state: IdempotencyState.COMPLETED.value,
                        IdempotencyKeyDB.response_status: response_status,
                        IdempotencyKeyDB.response_body: response_body,
                        IdempotencyKeyDB.expires_at: expires_at,
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
            return affected == 1
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to store idempotent response: {type(e).__name__}: {str(e)}")
            raise

    def release(self, scoped_key: str, request_hash: str) -> bool:
        """Drop a pending reservation whose operation did not succeed."""
        try:
            affected = (
                self.db.query(IdempotencyKeyDB)
                .filter(
                    IdempotencyKeyDB.scoped_key == scoped_key,
                    IdempotencyKeyDB.request_hash == request_hash,
                    IdempotencyKeyDB.state == IdempotencyState.PENDING.value,
                )
                .delete(synchronize_session=False)
            )
            self.db.commit()
            return affected == 1
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to release idempotency key: {type(e).__name__}: {str(e)}")
            raise

    def purge_expired(self, now: datetime) -> int:
        """Delete every record whose window has elapsed."""
        try:
            affected = (
                self.db.query(IdempotencyKeyDB)
                .filter(IdempotencyKeyDB.expires_at <= now)
                .delete(synchronize_session=False)
            )
            self.db.commit()
            logger.debug(f"Purged {affected} expired idempotency records")
            return int(affected)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to purge idempotency records: {type(e).__name__}: {str(e)}")
            raise
