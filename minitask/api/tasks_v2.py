"""Task endpoints, v2 (full responses, pagination, optional auth on reads)."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, Request, Response

from minitask.api.task_params import ListParams, task_filters, valid_task_id
from minitask.auth.dependencies import (
    enforce_rate_limit,
    get_current_identity,
    get_optional_identity,
    get_task_service,
)
from minitask.engine.task_service import TaskMutationService
from minitask.models.constants import IDEMPOTENCY_HEADER
from minitask.models.task import Task, TaskFilters
from minitask.models.user import CallerIdentity

router = APIRouter(
    prefix="/api/v2/tasks",
    tags=["tasks-v2"],
    dependencies=[Depends(enforce_rate_limit)],
)


@router.get("")
def list_tasks(
    filters: TaskFilters = Depends(task_filters),
    params: ListParams = Depends(),
    identity: Optional[CallerIdentity] = Depends(get_optional_identity),
    service: TaskMutationService = Depends(get_task_service),
) -> Dict[str, Any]:
    """List visible tasks. Anonymous callers only see public tasks."""
    page = service.list_tasks(identity, filters, params.sort, params.page, params.limit)
    return {
        "data": [task.full_view() for task in page.tasks],
        "pagination": {
            "page": page.page,
            "limit": page.limit,
            "total": page.total,
            "totalPages": page.total_pages,
        },
    }


@router.post("")
def create_task(
    request: Request,
    response: Response,
    payload: Any = Body(None),
    idempotency_key: Optional[str] = Header(None, alias=IDEMPOTENCY_HEADER),
    identity: CallerIdentity = Depends(get_current_identity),
    service: TaskMutationService = Depends(get_task_service),
) -> Dict[str, Any]:
    """Create a task. Priority `high` needs an active premium subscription or the admin role."""
    result = service.create_task(
        identity,
        payload,
        idempotency_key,
        request.method,
        request.url.path,
        Task.full_view,
    )
    response.status_code = result.status_code
    return result.body


@router.get("/{id}")
def get_task(
    task_id: int = Depends(valid_task_id),
    identity: Optional[CallerIdentity] = Depends(get_optional_identity),
    service: TaskMutationService = Depends(get_task_service),
) -> Dict[str, Any]:
    return service.get_task(identity, task_id).full_view()


@router.put("/{id}")
def update_task(
    task_id: int = Depends(valid_task_id),
    payload: Optional[Dict[str, Any]] = Body(None),
    identity: CallerIdentity = Depends(get_current_identity),
    service: TaskMutationService = Depends(get_task_service),
) -> Dict[str, Any]:
    return service.update_task(identity, task_id, payload or {}, Task.full_view).body


@router.patch("/{id}/status")
def update_task_status(
    task_id: int = Depends(valid_task_id),
    payload: Optional[Dict[str, Any]] = Body(None),
    identity: CallerIdentity = Depends(get_current_identity),
    service: TaskMutationService = Depends(get_task_service),
) -> Dict[str, Any]:
    return service.update_status(identity, task_id, payload or {}, Task.full_view).body


@router.delete("/{id}", status_code=204)
def delete_task(
    task_id: int = Depends(valid_task_id),
    identity: CallerIdentity = Depends(get_current_identity),
    service: TaskMutationService = Depends(get_task_service),
) -> Response:
    service.delete_task(identity, task_id)
    return Response(status_code=204)
