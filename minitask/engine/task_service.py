"""Task mutation service for minitask.

Each operation is an ordered list of stages over a `MutationContext`. A stage
either enriches the context (validated changes, the loaded task, the
idempotency reservation) or returns a terminal `MutationResult`, which ends
the run. Stage order is part of the contract: for example a missing
Idempotency-Key is reported before a missing title, and a missing title before
an invalid enum value.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from minitask.database.repository import SORT_COLUMNS, TaskRepository
from minitask.database.user_repository import UserRepository
from minitask.engine.idempotency import (
    IdempotencyCache,
    IdempotencyOutcome,
    caller_scope,
    fingerprint,
)
from minitask.engine.policy import can_read, can_set_high_priority, can_write
from minitask.errors import (
    AuthorizationError,
    IdempotencyConflict,
    IdempotencyInProgress,
    IdempotencyKeyMissing,
    NotFound,
    ValidationFailed,
)
from minitask.models.constants import (
    DEFAULT_IS_PUBLIC,
    DEFAULT_LIMIT,
    DEFAULT_PAGE,
    DEFAULT_PRIORITY,
    DEFAULT_SORT,
    DEFAULT_STATUS,
    MAX_LIMIT,
)
from minitask.models.task import Task, TaskFilters, TaskPage, TaskPriority, TaskStatus
from minitask.models.user import CallerIdentity

logger = logging.getLogger(__name__)

Projection = Callable[[Task], Dict[str, Any]]

# Request body key -> Task attribute for the optional writable fields.
_OPTIONAL_FIELDS = {
    "description": "description",
    "isPublic": "is_public",
    "assignedTo": "assigned_to",
}


@dataclass
class MutationContext:
    identity: CallerIdentity
    payload: Any
    task_id: Optional[int] = None
    idempotency_key: Optional[str] = None
    method: str = "POST"
    endpoint_path: str = ""
    body_fingerprint: Optional[str] = None
    changes: Dict[str, Any] = field(default_factory=dict)
    task: Optional[Task] = None


@dataclass(frozen=True)
class MutationResult:
    status_code: int
    body: Any
    replayed: bool = False


Stage = Callable[[MutationContext], Optional[MutationResult]]


# Query parsing -------------------------------------------------------------

def parse_task_id(raw: Any) -> int:
    """Parse a path id; anything but a positive integer is a client error."""
    try:
        task_id = int(str(raw))
    except (TypeError, ValueError):
        task_id = 0
    if task_id <= 0:
        raise ValidationFailed("param :id must be a positive integer", code="INVALID_ID")
    return task_id


def parse_sort(raw: Optional[str]) -> Tuple[str, str]:
    """Parse `field:dir`; anything not on the allow-list falls back to the default."""
    if not raw or ":" not in raw:
        return DEFAULT_SORT
    field_name, direction = raw.split(":", 1)
    direction = direction.lower()
    if field_name not in SORT_COLUMNS or direction not in ("asc", "desc"):
        return DEFAULT_SORT
    return field_name, direction


def _parse_positive_int(raw: Optional[str], default: int) -> int:
    try:
        return int(raw) if raw is not None else default
    except (TypeError, ValueError):
        return default


def clamp_pagination(page: Optional[str], limit: Optional[str]) -> Tuple[int, int]:
    """page >= 1, limit within [1, MAX_LIMIT]; unparsable values use the defaults."""
    page_num = max(1, _parse_positive_int(page, DEFAULT_PAGE))
    limit_num = min(MAX_LIMIT, max(1, _parse_positive_int(limit, DEFAULT_LIMIT)))
    return page_num, limit_num


def parse_status(value: Any) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError:
        raise ValidationFailed("Invalid task status", code="INVALID_STATUS", details={"allowed": [s.value for s in TaskStatus]})


def parse_priority(value: Any) -> TaskPriority:
    try:
        return TaskPriority(value)
    except ValueError:
        raise ValidationFailed("Invalid task priority", code="INVALID_PRIORITY", details={"allowed": [p.value for p in TaskPriority]})


def parse_filters(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    assigned_to: Optional[str] = None,
    is_public: Optional[str] = None,
) -> TaskFilters:
    filters = TaskFilters()
    if status:
        filters.status = parse_status(status)
    if priority:
        filters.priority = parse_priority(priority)
    if assigned_to:
        try:
            filters.assigned_to = int(assigned_to)
        except ValueError:
            raise ValidationFailed("assignedTo must be an integer user id", code="INVALID_ASSIGNEE")
    if is_public:
        lowered = is_public.lower()
        if lowered not in ("true", "false"):
            raise ValidationFailed("isPublic must be 'true' or 'false'", code="VALIDATION_FAILED")
        filters.is_public = lowered == "true"
    return filters


# Service -------------------------------------------------------------------

class TaskMutationService:
    """Orchestrates validation, policy, idempotency and persistence for tasks."""

    def __init__(
        self,
        tasks: TaskRepository,
        users: UserRepository,
        idempotency: IdempotencyCache,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.tasks = tasks
        self.users = users
        self.idempotency = idempotency
        self.clock = clock

    # Reads

    def get_task(self, identity: Optional[CallerIdentity], task_id: int) -> Task:
        """Missing and invisible tasks look the same to the caller."""
        task = self.tasks.get(task_id)
        if task is None or not can_read(identity, task):
            raise NotFound("Task not found")
        return task

    def list_tasks(
        self,
        identity: Optional[CallerIdentity],
        filters: Optional[TaskFilters] = None,
        sort: Tuple[str, str] = DEFAULT_SORT,
        page: int = DEFAULT_PAGE,
        limit: int = DEFAULT_LIMIT,
    ) -> TaskPage:
        tasks, total = self.tasks.list(identity, filters, sort, page, limit)
        return TaskPage(tasks=tasks, page=page, limit=limit, total=total)

    def list_visible(self, identity: Optional[CallerIdentity], filters: Optional[TaskFilters] = None) -> List[Task]:
        """Every visible task matching `filters`, newest first."""
        tasks, _ = self.tasks.list(identity, filters, DEFAULT_SORT, limit=None)
        return tasks

    # Mutations

    def create_task(
        self,
        identity: CallerIdentity,
        payload: Any,
        idempotency_key: Optional[str],
        method: str,
        endpoint_path: str,
        projection: Projection,
    ) -> MutationResult:
        ctx = MutationContext(
            identity=identity,
            payload=payload if payload is not None else {},
            idempotency_key=idempotency_key,
            method=method,
            endpoint_path=endpoint_path,
        )
        result = self._run(ctx, (
            self._require_idempotency_key,
            self._require_object_body,
            self._require_title,
            self._intercept_idempotency,
        ))
        if result is not None:
            return result

        try:
            self._run(ctx, (
                self._validate_enums,
                self._validate_optional_fields,
                self._check_high_priority,
                self._check_assignee,
                self._persist_create,
            ))
        except Exception:
            self.idempotency.release(*self._idempotency_args(ctx))
            raise

        body = projection(ctx.task)
        self.idempotency.commit(*self._idempotency_args(ctx), response_body=body, status_code=201)
        logger.info(f"User {identity.id} created task {ctx.task.id}")
        return MutationResult(201, body)

    def update_task(
        self,
        identity: CallerIdentity,
        task_id: int,
        payload: Dict[str, Any],
        projection: Projection,
    ) -> MutationResult:
        """Full update: title required, omitted optional fields keep their values."""
        ctx = MutationContext(identity=identity, payload=payload, task_id=task_id)
        self._run(ctx, (
            self._require_title,
            self._validate_enums,
            self._validate_optional_fields,
            self._check_high_priority,
            self._load_for_write,
            self._check_assignee,
            self._persist_update,
        ))
        return MutationResult(200, projection(ctx.task))

    def update_status(
        self,
        identity: CallerIdentity,
        task_id: int,
        payload: Dict[str, Any],
        projection: Projection,
    ) -> MutationResult:
        ctx = MutationContext(identity=identity, payload=payload, task_id=task_id)
        self._run(ctx, (
            self._require_status,
            self._load_for_write,
            self._persist_update,
        ))
        return MutationResult(200, projection(ctx.task))

    def delete_task(self, identity: CallerIdentity, task_id: int) -> None:
        ctx = MutationContext(identity=identity, payload={}, task_id=task_id)
        self._run(ctx, (self._load_for_write, self._persist_delete))

    # Pipeline

    @staticmethod
    def _run(ctx: MutationContext, stages: Iterable[Stage]) -> Optional[MutationResult]:
        for stage in stages:
            result = stage(ctx)
            if result is not None:
                return result
        return None

    @staticmethod
    def _idempotency_args(ctx: MutationContext):
        return (
            ctx.idempotency_key,
            caller_scope(ctx.identity),
            ctx.method,
            ctx.endpoint_path,
            ctx.body_fingerprint,
        )

    # Stages

    def _require_idempotency_key(self, ctx: MutationContext) -> None:
        if not ctx.idempotency_key:
            raise IdempotencyKeyMissing()

    def _require_object_body(self, ctx: MutationContext) -> None:
        if not isinstance(ctx.payload, dict):
            raise ValidationFailed("Request body must be a JSON object", code="VALIDATION_FAILED")

    def _require_title(self, ctx: MutationContext) -> None:
        title = ctx.payload.get("title")
        if not title:
            raise ValidationFailed("Title is required", code="MISSING_FIELD", details={"field": "title"})
        if not isinstance(title, str):
            raise ValidationFailed("Title must be a string", code="VALIDATION_FAILED", details={"field": "title"})
        ctx.changes["title"] = title

    def _intercept_idempotency(self, ctx: MutationContext) -> Optional[MutationResult]:
        ctx.body_fingerprint = fingerprint(ctx.payload)
        decision = self.idempotency.begin(*self._idempotency_args(ctx))

        if decision.outcome is IdempotencyOutcome.REPLAY:
            logger.info(f"Replaying stored response for {ctx.method} {ctx.endpoint_path}")
            return MutationResult(200, decision.record.response_body, replayed=True)
        if decision.outcome is IdempotencyOutcome.CONFLICT:
            raise IdempotencyConflict()
        if decision.outcome is IdempotencyOutcome.IN_PROGRESS:
            raise IdempotencyInProgress(headers={"Retry-After": "1"})
        return None

    def _validate_enums(self, ctx: MutationContext) -> None:
        if ctx.payload.get("status") is not None:
            ctx.changes["status"] = parse_status(ctx.payload["status"])
        if ctx.payload.get("priority") is not None:
            ctx.changes["priority"] = parse_priority(ctx.payload["priority"])

    def _require_status(self, ctx: MutationContext) -> None:
        ctx.changes["status"] = parse_status(ctx.payload.get("status"))

    def _validate_optional_fields(self, ctx: MutationContext) -> None:
        for key, attr in _OPTIONAL_FIELDS.items():
            if key not in ctx.payload:
                continue
            value = ctx.payload[key]
            if key == "description" and value is not None and not isinstance(value, str):
                raise ValidationFailed("description must be a string", details={"field": key})
            if key == "isPublic" and not isinstance(value, bool):
                raise ValidationFailed("isPublic must be a boolean", details={"field": key})
            if key == "assignedTo" and value is not None and (isinstance(value, bool) or not isinstance(value, int)):
                raise ValidationFailed("assignedTo must be an integer user id", code="INVALID_ASSIGNEE", details={"field": key})
            ctx.changes[attr] = value

    def _check_high_priority(self, ctx: MutationContext) -> None:
        if ctx.changes.get("priority") is not TaskPriority.HIGH:
            return
        if not can_set_high_priority(ctx.identity, now=self.clock()):
            raise AuthorizationError(
                "High priority requires an active premium subscription or the admin role",
                code="HIGH_PRIORITY_NOT_ALLOWED",
            )

    def _check_assignee(self, ctx: MutationContext) -> None:
        assignee = ctx.changes.get("assigned_to")
        if assignee is not None and not self.users.exists(assignee):
            raise ValidationFailed("assignedTo does not reference an existing user", code="INVALID_ASSIGNEE")

    def _load_for_write(self, ctx: MutationContext) -> None:
        # Absent tasks are reported as not found, never as forbidden.
        task = self.tasks.get(ctx.task_id)
        if task is None:
            raise NotFound("Task not found")
        if not can_write(ctx.identity, task):
            raise AuthorizationError("Only the owner or an admin can modify this task")
        ctx.task = task

    def _persist_create(self, ctx: MutationContext) -> None:
        ctx.task = self.tasks.create(
            owner_id=ctx.identity.id,
            title=ctx.changes["title"],
            description=ctx.changes.get("description"),
            status=ctx.changes.get("status", DEFAULT_STATUS),
            priority=ctx.changes.get("priority", DEFAULT_PRIORITY),
            is_public=ctx.changes.get("is_public", DEFAULT_IS_PUBLIC),
            assigned_to=ctx.changes.get("assigned_to"),
        )

    def _persist_update(self, ctx: MutationContext) -> None:
        try:
            ctx.task = self.tasks.update(ctx.task_id, ctx.changes)
        except ValueError:
            # Deleted between the policy check and the write.
            raise NotFound("Task not found")

    def _persist_delete(self, ctx: MutationContext) -> None:
        self.tasks.delete(ctx.task_id)
        logger.info(f"User {ctx.identity.id} deleted task {ctx.task_id}")
