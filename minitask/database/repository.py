"""Repository layer for task database operations."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.orm import Session
from sqlalchemy import asc, case, desc, or_

from minitask.models.task import Task, TaskFilters, TaskPriority
from minitask.models.user import CallerIdentity
from minitask.database.models import TaskDB, enum_to_value

logger = logging.getLogger(__name__)

# SQL expression: high=3, medium=2, low=1 for ORDER BY
_priority_order_sql = case(
    (TaskDB.priority == TaskPriority.HIGH.value, 3),
    (TaskDB.priority == TaskPriority.MEDIUM.value, 2),
    (TaskDB.priority == TaskPriority.LOW.value, 1),
    else_=2,
)

# API sort field -> column expression
SORT_COLUMNS = {
    "createdAt": TaskDB.created_at,
    "updatedAt": TaskDB.updated_at,
    "title": TaskDB.title,
    "priority": _priority_order_sql,
    "status": TaskDB.status,
    "id": TaskDB.id,
}

# Columns a caller may change through update(); everything else is fixed at creation.
_UPDATABLE_FIELDS = ("title", "description", "status", "priority", "is_public", "assigned_to")


def visibility_filter(identity: Optional[CallerIdentity]):
    """SQL counterpart of `can_read`: public, owned, assigned, or everything for admins.

    Returns None when no restriction applies.
    """
    if identity is None:
        return TaskDB.is_public.is_(True)
    if identity.is_admin:
        return None
    return or_(
        TaskDB.is_public.is_(True),
        TaskDB.owner_id == identity.id,
        TaskDB.assigned_to == identity.id,
    )


class TaskRepository:
    """Repository for Task database operations."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        owner_id: int,
        title: str,
        description: Optional[str],
        status: Any,
        priority: Any,
        is_public: bool,
        assigned_to: Optional[int] = None,
    ) -> Task:
        """Create a new task and return it with its generated id."""
        now = datetime.utcnow()
        task_db = TaskDB(
            owner_id=owner_id,
            title=title,
            description=description,
            status=enum_to_value(status),
            priority=enum_to_value(priority),
            is_public=is_public,
            assigned_to=assigned_to,
            created_at=now,
            updated_at=now,
        )
        try:
            self.db.add(task_db)
            self.db.commit()
            self.db.refresh(task_db)
            logger.debug(f"Created task {task_db.id} for user {owner_id}: {title[:50]}")
            return task_db.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create task for user {owner_id}: {type(e).__name__}: {str(e)}")
            raise

    def get(self, task_id: int) -> Optional[Task]:
        """Get task by ID regardless of who may see it (callers apply policy)."""
        task_db = self.db.query(TaskDB).filter(TaskDB.id == task_id).first()
        return task_db.to_pydantic() if task_db else None

    def list(
        self,
        viewer: Optional[CallerIdentity],
        filters: Optional[TaskFilters] = None,
        sort: Tuple[str, str] = ("createdAt", "desc"),
        page: int = 1,
        limit: Optional[int] = 10,
    ) -> Tuple[List[Task], int]:
        """List tasks visible to `viewer`, filtered, sorted and paginated.

        A `limit` of None returns every matching task.

        Returns:
            Tuple of (tasks on the requested page, total matching tasks)
        """
        query = self.db.query(TaskDB)

        visible = visibility_filter(viewer)
        if visible is not None:
            query = query.filter(visible)

        filters = filters or TaskFilters()
        if filters.status is not None:
            query = query.filter(TaskDB.status == enum_to_value(filters.status))
        if filters.priority is not None:
            query = query.filter(TaskDB.priority == enum_to_value(filters.priority))
        if filters.assigned_to is not None:
            query = query.filter(TaskDB.assigned_to == filters.assigned_to)
        if filters.is_public is not None:
            query = query.filter(TaskDB.is_public.is_(filters.is_public))

        total = query.count()

        field, direction = sort
        column = SORT_COLUMNS.get(field, TaskDB.created_at)
        order = desc if direction == "desc" else asc
        # id keeps the ordering stable across pages when the sort column ties
        query = query.order_by(order(column), order(TaskDB.id))

        if limit is not None:
            query = query.offset((page - 1) * limit).limit(limit)
        tasks_db = query.all()
        return [task_db.to_pydantic() for task_db in tasks_db], total

    def update(self, task_id: int, changes: Dict[str, Any]) -> Task:
        """Apply `changes` (a subset of the updatable fields) to a task."""
        task_db = self.db.query(TaskDB).filter(TaskDB.id == task_id).first()
        if not task_db:
            raise ValueError(f"Task {task_id} not found")

        for field, value in changes.items():
            if field not in _UPDATABLE_FIELDS:
                raise ValueError(f"Field {field} cannot be updated")
            if field in ("status", "priority"):
                value = enum_to_value(value)
            setattr(task_db, field, value)
        task_db.updated_at = datetime.utcnow()

        try:
            self.db.commit()
            self.db.refresh(task_db)
            logger.debug(f"Updated task {task_id}: {sorted(changes)}")
            return task_db.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to update task {task_id}: {type(e).__name__}: {str(e)}")
            raise

    def delete(self, task_id: int) -> bool:
        """Permanently delete a task by ID."""
        task_db = self.db.query(TaskDB).filter(TaskDB.id == task_id).first()
        if not task_db:
            return False

        try:
            self.db.delete(task_db)
            self.db.commit()
            logger.debug(f"Deleted task {task_id}")
            return True
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to delete task {task_id}: {type(e).__name__}: {str(e)}")
            raise
