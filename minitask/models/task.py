"""Task data model for minitask."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from enum import Enum
from pydantic import BaseModel, Field


class TaskStatus(str, Enum):
    """Task status enumeration. Any status may move to any other."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TaskPriority(str, Enum):
    """Task priority enumeration."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _isoformat(value: datetime) -> str:
    return value.isoformat() + "Z"


class Task(BaseModel):
    """Canonical Task model."""

    id: int = Field(..., description="Task identifier")
    title: str = Field(..., description="Task title")
    description: Optional[str] = Field(None, description="Free-form description")
    status: TaskStatus = Field(TaskStatus.PENDING, description="Task status")
    priority: TaskPriority = Field(TaskPriority.MEDIUM, description="Task priority")
    is_public: bool = Field(False, description="Visible to every caller, including anonymous ones")
    owner_id: int = Field(..., description="User ID who owns this task")
    assigned_to: Optional[int] = Field(None, description="User ID the task is assigned to")
    created_at: datetime = Field(..., description="Task creation timestamp")
    updated_at: datetime = Field(..., description="Task last update timestamp")

    def basic_view(self) -> Dict[str, Any]:
        """Reduced projection returned by the v1 API."""
        return {"id": self.id, "title": self.title, "status": self.status.value}

    def full_view(self) -> Dict[str, Any]:
        """Full projection returned by the v2 API."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "isPublic": self.is_public,
            "ownerId": self.owner_id,
            "assignedTo": self.assigned_to,
            "metadata": {
                "createdAt": _isoformat(self.created_at),
                "updatedAt": _isoformat(self.updated_at),
                "version": "v2",
            },
        }


class TaskFilters(BaseModel):
    """Validated list filters; None means "do not filter"."""

    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assigned_to: Optional[int] = None
    is_public: Optional[bool] = None


class TaskPage(BaseModel):
    """One page of a task listing."""

    tasks: List[Task]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.total else 0
