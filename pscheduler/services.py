"""Task lifecycle and authentication services.

Every task operation resolves the acting username to a User first and then
looks tasks up by (id, owner) in a single query, so a task owned by someone
else raises the same ResourceNotFoundError as a task that does not exist.
Each public operation commits at most once.
"""

import logging
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence

from sqlalchemy.orm import Session

from . import crud, models, schemas, security
from .events import CompletionPublisher, TaskCompletedEvent, default_publisher
from .exceptions import (
    InvalidCredentialsError,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
)

logger = logging.getLogger(__name__)

TASK_NOT_FOUND = "Task not found"
USER_NOT_FOUND = "User not found"


class TaskService:
    def __init__(
        self,
        db: Session,
        publisher: Optional[CompletionPublisher] = None,
        clock: Callable[[], datetime] = models.utcnow,
        defer: Optional[Callable[..., Any]] = None,
    ):
        """defer(fn, *args) schedules fn to run later, e.g. BackgroundTasks.add_task."""
        self.db = db
        self.publisher = publisher or default_publisher()
        self.clock = clock
        self.defer = defer

    # -- helpers --

    def _resolve_user(self, username: str) -> models.User:
        user = crud.get_user_by_username(self.db, username)
        if user is None:
            raise ResourceNotFoundError(USER_NOT_FOUND)
        return user

    def _owned_task(self, task_id: int, user: models.User, for_update: bool = False) -> models.Task:
        task = crud.get_task_for_owner(self.db, task_id, user.id, for_update=for_update)
        if task is None:
            raise ResourceNotFoundError(TASK_NOT_FOUND)
        return task

    def _views(self, tasks, reference_time: Optional[datetime] = None) -> List[schemas.TaskOut]:
        if reference_time is None:
            reference_time = self.clock()
        return [schemas.TaskOut.from_task(t, reference_time) for t in tasks]

    def _view(self, task: models.Task) -> schemas.TaskOut:
        return schemas.TaskOut.from_task(task, self.clock())

    def _publish(self, event: TaskCompletedEvent):
        # Called only after the commit.
        if self.defer is not None:
            self.defer(self.publisher.publish, event)
        else:
            self.publisher.publish(event)

    # -- create / read --

    def create_task(self, task_in: schemas.TaskCreate, username: str) -> schemas.TaskOut:
        logger.info("Creating task for user: %s", username)
        user = self._resolve_user(username)

        task = models.Task(
            title=task_in.title,
            description=task_in.description,
            deadline=task_in.deadline,
            priority=task_in.priority or models.Priority.MEDIUM,
            status=models.TaskStatus.PENDING,
            is_recurring=task_in.is_recurring,
            recurrence_pattern=task_in.recurrence_pattern,
            tags=task_in.tags,
            user=user,
        )
        task = crud.save_task(self.db, task)
        logger.info("Task created successfully with ID: %s", task.id)
        return self._view(task)

    def get_all_tasks_for_user(self, username: str) -> List[schemas.TaskOut]:
        logger.info("Fetching all tasks for user: %s", username)
        user = self._resolve_user(username)
        return self._views(crud.get_tasks_for_owner(self.db, user.id))

    def get_task_by_id(self, task_id: int, username: str) -> schemas.TaskOut:
        logger.info("Fetching task with ID: %s for user: %s", task_id, username)
        user = self._resolve_user(username)
        return self._view(self._owned_task(task_id, user))

    def get_tasks_by_status(self, status: models.TaskStatus, username: str) -> List[schemas.TaskOut]:
        logger.info("Fetching tasks with status: %s for user: %s", status.value, username)
        user = self._resolve_user(username)
        return self._views(crud.get_tasks_by_status(self.db, user.id, status))

    def get_tasks_by_priority(self, priority: models.Priority, username: str) -> List[schemas.TaskOut]:
        logger.info("Fetching tasks with priority: %s for user: %s", priority.value, username)
        user = self._resolve_user(username)
        return self._views(crud.get_tasks_by_priority(self.db, user.id, priority))

    def get_tasks_in_range(self, start: datetime, end: datetime, username: str) -> List[schemas.TaskOut]:
        logger.info("Fetching tasks due between %s and %s for user: %s", start, end, username)
        start, end = models.to_naive_utc(start), models.to_naive_utc(end)
        user = self._resolve_user(username)
        return self._views(crud.get_tasks_in_range(self.db, user.id, start, end))

    def get_overdue_tasks(
        self, username: str, reference_time: Optional[datetime] = None
    ) -> List[schemas.TaskOut]:
        logger.info("Fetching overdue tasks for user: %s as of %s", username, reference_time)
        user = self._resolve_user(username)
        effective_time = models.to_naive_utc(reference_time) or self.clock()
        tasks = crud.get_overdue_tasks(self.db, user.id, effective_time)
        return self._views(tasks, effective_time)

    def get_task_summary(self, username: str) -> schemas.TaskSummary:
        user = self._resolve_user(username)
        counts = crud.count_tasks_by_status(self.db, user.id)
        overdue = crud.get_overdue_tasks(self.db, user.id, self.clock())
        return schemas.TaskSummary(
            total=sum(counts.values()),
            overdue=len(overdue),
            by_status={status: counts.get(status, 0) for status in models.TaskStatus},
        )

    # -- mutations --

    def update_task(self, task_id: int, task_in: schemas.TaskUpdate, username: str) -> schemas.TaskOut:
        """Apply the fields present in task_in.

        Setting status to COMPLETED here stamps completed_at but does not
        publish a completion event; only the complete operations do.
        """
        logger.info("Updating task with ID: %s for user: %s", task_id, username)
        user = self._resolve_user(username)
        task = self._owned_task(task_id, user, for_update=True)

        for field, value in task_in.model_dump(exclude_unset=True).items():
            if value is None:
                continue
            setattr(task, field, value)
            if field == "status" and value == models.TaskStatus.COMPLETED:
                task.completed_at = self.clock()

        task = crud.save_task(self.db, task)
        logger.info("Task updated successfully: %s", task.id)
        return self._view(task)

    def mark_task_as_completed(self, task_id: int, username: str) -> schemas.TaskOut:
        logger.info("Marking task as completed: %s for user: %s", task_id, username)
        user = self._resolve_user(username)
        task = self._owned_task(task_id, user, for_update=True)

        if task.status == models.TaskStatus.COMPLETED:
            logger.info("Task %s is already completed. Returning current state.", task_id)
            return self._view(task)

        task.mark_as_completed(self.clock())
        task = crud.save_task(self.db, task)
        logger.info("Task marked as completed: %s", task.id)

        view = self._view(task)
        self._publish(TaskCompletedEvent([view], username))
        return view

    def mark_tasks_as_completed(self, task_ids: Sequence[int], username: str) -> List[schemas.TaskOut]:
        """Complete every task in task_ids or none of them.

        Already completed tasks keep their completed_at and are still part of
        the result and of the published event.
        """
        logger.info("Bulk completing %d tasks for user: %s", len(task_ids), username)
        user = self._resolve_user(username)
        if not task_ids:
            return []

        tasks = crud.get_tasks_by_ids_for_owner(self.db, task_ids, user.id, for_update=True)
        if len(tasks) != len(task_ids):
            logger.warning(
                "Mismatch: Found %d tasks but %d IDs were provided", len(tasks), len(task_ids)
            )
            raise ResourceNotFoundError("One or more tasks not found for this user")

        now = self.clock()
        for task in tasks:
            if task.status != models.TaskStatus.COMPLETED:
                task.mark_as_completed(now)

        tasks = crud.save_tasks(self.db, tasks)
        logger.info("Successfully completed %d tasks for user: %s", len(tasks), username)

        views = self._views(tasks)
        self._publish(TaskCompletedEvent(views, username))
        return views

    def delete_task(self, task_id: int, username: str):
        logger.info("Deleting task with ID: %s for user: %s", task_id, username)
        user = self._resolve_user(username)
        task = self._owned_task(task_id, user, for_update=True)
        crud.delete_task(self.db, task)
        logger.info("Task deleted successfully: %s", task_id)


class AuthService:
    def __init__(self, db: Session):
        self.db = db

    def _auth_response(self, user: models.User) -> schemas.AuthResponse:
        return schemas.AuthResponse(
            token=security.create_access_token(user.username, user.id),
            user_id=user.id,
            username=user.username,
            email=user.email,
        )

    def register(self, request: schemas.RegisterRequest) -> schemas.AuthResponse:
        logger.info("Registering new user: %s", request.username)
        if crud.username_exists(self.db, request.username):
            raise ResourceAlreadyExistsError("Username already exists")
        if crud.email_exists(self.db, request.email):
            raise ResourceAlreadyExistsError("Email already exists")

        user = models.User(
            username=request.username,
            email=request.email,
            password=security.hash_password(request.password),
            first_name=request.first_name,
            last_name=request.last_name,
            is_active=True,
            role=models.Role.USER,
        )
        user = crud.create_user(self.db, user)
        logger.info("User registered successfully: %s", user.username)
        return self._auth_response(user)

    def login(self, request: schemas.LoginRequest) -> schemas.AuthResponse:
        logger.info("User login attempt: %s", request.username)
        user = crud.get_user_by_username(self.db, request.username)
        if user is None or not security.verify_password(request.password, user.password):
            raise InvalidCredentialsError("Invalid username or password")
        if not user.is_active:
            raise InvalidCredentialsError("User account is disabled")

        logger.info("User logged in successfully: %s", user.username)
        return self._auth_response(user)
