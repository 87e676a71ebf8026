from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from .models import (
    DESCRIPTION_MAX_LENGTH,
    TAGS_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    Priority,
    RecurrencePattern,
    Task,
    TaskStatus,
    to_naive_utc,
    utcnow,
)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(default=None, max_length=DESCRIPTION_MAX_LENGTH)
    deadline: datetime
    priority: Optional[Priority] = None
    tags: Optional[str] = Field(default=None, max_length=TAGS_MAX_LENGTH)
    is_recurring: bool = False
    recurrence_pattern: Optional[RecurrencePattern] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v):
        if not v.strip():
            raise ValueError("Title is required")
        return v

    @field_validator("deadline")
    @classmethod
    def deadline_in_future(cls, v):
        v = to_naive_utc(v)
        if v <= utcnow():
            raise ValueError("Deadline must be in the future")
        return v


class TaskUpdate(BaseModel):
    """Partial update: only fields present in the request are applied."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(default=None, max_length=DESCRIPTION_MAX_LENGTH)
    deadline: Optional[datetime] = None
    status: Optional[TaskStatus] = None
    priority: Optional[Priority] = None
    tags: Optional[str] = Field(default=None, max_length=TAGS_MAX_LENGTH)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Title is required")
        return v

    @field_validator("deadline")
    @classmethod
    def normalize_deadline(cls, v):
        return to_naive_utc(v)

    @field_validator("status")
    @classmethod
    def status_assignable(cls, v):
        # Overdue is computed from the deadline, never stored.
        if v == TaskStatus.OVERDUE:
            raise ValueError("Status OVERDUE cannot be assigned")
        return v


class BulkCompleteRequest(BaseModel):
    task_ids: List[int] = Field(min_length=1)


class TaskOut(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: Priority
    deadline: datetime
    completed_at: Optional[datetime] = None
    is_recurring: bool
    recurrence_pattern: Optional[RecurrencePattern] = None
    tags: Optional[str] = None
    owner_id: int
    owner_username: str
    created_at: datetime
    updated_at: datetime
    is_overdue: bool

    class Config:
        from_attributes = True

    @classmethod
    def from_task(cls, task: Task, reference_time: Optional[datetime] = None) -> "TaskOut":
        return cls(
            id=task.id,
            title=task.title,
            description=task.description,
            status=task.status,
            priority=task.priority,
            deadline=task.deadline,
            completed_at=task.completed_at,
            is_recurring=task.is_recurring,
            recurrence_pattern=task.recurrence_pattern,
            tags=task.tags,
            owner_id=task.user.id,
            owner_username=task.user.username,
            created_at=task.created_at,
            updated_at=task.updated_at,
            is_overdue=task.is_overdue(reference_time),
        )


class TaskSummary(BaseModel):
    total: int
    overdue: int
    by_status: Dict[TaskStatus, int]


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=50, pattern=r"^[a-zA-Z0-9_-]+$")
    email: EmailStr
    # bcrypt only hashes the first 72 bytes
    password: str = Field(min_length=8, max_length=72)
    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)


class LoginRequest(BaseModel):
    username: str
    password: str


class AuthResponse(BaseModel):
    token: str
    type: str = "Bearer"
    user_id: int
    username: str
    email: str


class ErrorResponse(BaseModel):
    timestamp: datetime
    status: int
    error: str
    message: str
    path: str
    validation_errors: Optional[Dict[str, str]] = None
