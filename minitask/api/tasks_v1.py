"""Task endpoints, v1 (basic `{id, title, status}` responses)."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Header, Request, Response

from minitask.api.task_params import valid_task_id
from minitask.auth.dependencies import enforce_rate_limit, get_current_identity, get_task_service
from minitask.engine.task_service import TaskMutationService, parse_filters
from minitask.models.constants import IDEMPOTENCY_HEADER
from minitask.models.task import Task
from minitask.models.user import CallerIdentity

router = APIRouter(
    prefix="/api/v1/tasks",
    tags=["tasks-v1"],
    dependencies=[Depends(enforce_rate_limit)],
)


@router.post("")
def create_task(
    request: Request,
    response: Response,
    payload: Any = Body(None),
    idempotency_key: Optional[str] = Header(None, alias=IDEMPOTENCY_HEADER),
    identity: CallerIdentity = Depends(get_current_identity),
    service: TaskMutationService = Depends(get_task_service),
) -> Dict[str, Any]:
    """Create a task. Retries with the same Idempotency-Key replay the first response."""
    result = service.create_task(
        identity,
        payload,
        idempotency_key,
        request.method,
        request.url.path,
        Task.basic_view,
    )
    response.status_code = result.status_code
    return result.body


@router.get("")
def list_tasks(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    identity: CallerIdentity = Depends(get_current_identity),
    service: TaskMutationService = Depends(get_task_service),
) -> List[Dict[str, Any]]:
    tasks = service.list_visible(identity, parse_filters(status=status, priority=priority))
    return [task.basic_view() for task in tasks]


@router.get("/{id}")
def get_task(
    task_id: int = Depends(valid_task_id),
    identity: CallerIdentity = Depends(get_current_identity),
    service: TaskMutationService = Depends(get_task_service),
) -> Dict[str, Any]:
    return service.get_task(identity, task_id).basic_view()


@router.put("/{id}")
def update_task(
    task_id: int = Depends(valid_task_id),
    payload: Optional[Dict[str, Any]] = Body(None),
    identity: CallerIdentity = Depends(get_current_identity),
    service: TaskMutationService = Depends(get_task_service),
) -> Dict[str, Any]:
    return service.update_task(identity, task_id, payload or {}, Task.basic_view).body


@router.patch("/{id}/status")
def update_task_status(
    task_id: int = Depends(valid_task_id),
    payload: Optional[Dict[str, Any]] = Body(None),
    identity: CallerIdentity = Depends(get_current_identity),
    service: TaskMutationService = Depends(get_task_service),
) -> Dict[str, Any]:
    return service.update_status(identity, task_id, payload or {}, Task.basic_view).body


@router.delete("/{id}")
def delete_task(
    task_id: int = Depends(valid_task_id),
    identity: CallerIdentity = Depends(get_current_identity),
    service: TaskMutationService = Depends(get_task_service),
) -> Dict[str, Any]:
    service.delete_task(identity, task_id)
    return {"ok": True}
