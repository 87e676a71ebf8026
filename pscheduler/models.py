import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship, validates

from .database import Base
from .exceptions import ValidationFailedError

TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 2000
TAGS_MAX_LENGTH = 500


def utcnow() -> datetime:
    # Naive UTC, the form SQLite hands back.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class Role(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class TaskStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    # Declared but never assigned; overdue is computed by Task.is_overdue().
    OVERDUE = "OVERDUE"


class Priority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class RecurrencePattern(str, enum.Enum):
    """Stored with the task; nothing materializes recurring instances."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


TERMINAL_STATUSES = (TaskStatus.COMPLETED, TaskStatus.CANCELLED)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=False)
    password = Column(String(255), nullable=False)
    first_name = Column(String(50), nullable=True)
    last_name = Column(String(50), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    role = Column(Enum(Role), nullable=False, default=Role.USER)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    tasks = relationship("Task", back_populates="user", cascade="all, delete-orphan")


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(TITLE_MAX_LENGTH), nullable=False)
    description = Column(String(DESCRIPTION_MAX_LENGTH), nullable=True)
    status = Column(Enum(TaskStatus), nullable=False, default=TaskStatus.PENDING, index=True)
    priority = Column(Enum(Priority), nullable=False, default=Priority.MEDIUM)
    deadline = Column(DateTime, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurrence_pattern = Column(Enum(RecurrencePattern), nullable=True)
    tags = Column(String(TAGS_MAX_LENGTH), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="tasks")

    @validates("title")
    def _validate_title(self, key, value):
        if value is None or not value.strip():
            raise ValidationFailedError(key, "Title is required")
        if len(value) > TITLE_MAX_LENGTH:
            raise ValidationFailedError(key, f"Title must not exceed {TITLE_MAX_LENGTH} characters")
        return value

    @validates("description")
    def _validate_description(self, key, value):
        if value is not None and len(value) > DESCRIPTION_MAX_LENGTH:
            raise ValidationFailedError(
                key, f"Description must not exceed {DESCRIPTION_MAX_LENGTH} characters"
            )
        return value

    @validates("tags")
    def _validate_tags(self, key, value):
        if value is not None and len(value) > TAGS_MAX_LENGTH:
            raise ValidationFailedError(key, f"Tags must not exceed {TAGS_MAX_LENGTH} characters")
        return value

    def is_overdue(self, reference_time: Optional[datetime] = None) -> bool:
        """True when the task is still open and its deadline is strictly before reference_time."""
        reference_time = to_naive_utc(reference_time) or utcnow()
        return self.status not in TERMINAL_STATUSES and self.deadline < reference_time

    def mark_as_completed(self, now: Optional[datetime] = None):
        self.status = TaskStatus.COMPLETED
        self.completed_at = now or utcnow()
