"""User account endpoints."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from minitask.api.auth_models import UpdateProfileRequest
from minitask.auth.dependencies import get_current_identity, require_role
from minitask.database.database import get_db
from minitask.database.user_repository import UserRepository
from minitask.errors import NotFound
from minitask.models.user import CallerIdentity, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.get("/me")
def get_me(identity: CallerIdentity = Depends(get_current_identity), db: Session = Depends(get_db)):
    user = UserRepository(db).get(identity.id)
    if user is None:
        raise NotFound("User not found")
    return user.profile()


@router.put("/me")
def update_me(
    request: UpdateProfileRequest,
    identity: CallerIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    user = UserRepository(db).update_profile(identity.id, request.name)
    if user is None:
        raise NotFound("User not found")
    return {"message": "Updated", "user": user.profile()}


@router.delete("/me")
def delete_me(identity: CallerIdentity = Depends(get_current_identity), db: Session = Depends(get_db)):
    """Delete the caller's account along with everything it owns."""
    if not UserRepository(db).delete_account(identity.id):
        raise NotFound("User not found")
    logger.info(f"Deleted account {identity.id}")
    return {"message": "Account deleted"}


@router.get("")
def list_users(
    _admin: CallerIdentity = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db),
):
    """Admin only."""
    return [
        {"id": user.id, "email": user.email, "name": user.name, "role": user.role.value}
        for user in UserRepository(db).list_all()
    ]
