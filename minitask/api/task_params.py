"""Path and query parameter dependencies shared by the task routers."""

from typing import Optional

from fastapi import Path, Query

from minitask.engine.task_service import clamp_pagination, parse_filters, parse_sort, parse_task_id
from minitask.models.task import TaskFilters


def valid_task_id(task_id: str = Path(..., alias="id")) -> int:
    """Positive integer task id, else 400 INVALID_ID."""
    return parse_task_id(task_id)


def task_filters(
    status: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    assigned_to: Optional[str] = Query(None, alias="assignedTo"),
    is_public: Optional[str] = Query(None, alias="isPublic"),
) -> TaskFilters:
    return parse_filters(status, priority, assigned_to, is_public)


class ListParams:
    """Sort and pagination for v2 listings, normalized to safe values."""

    def __init__(
        self,
        sort: Optional[str] = Query(None, description="field:dir, e.g. priority:desc"),
        page: Optional[str] = Query(None),
        limit: Optional[str] = Query(None),
    ):
        self.sort = parse_sort(sort)
        self.page, self.limit = clamp_pagination(page, limit)
