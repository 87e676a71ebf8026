from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models

# ---------------------------------------------------------------------------
# Tasks. Every lookup is scoped to the owner.
# ---------------------------------------------------------------------------

def get_tasks_for_owner(db: Session, user_id: int) -> List[models.Task]:
    return db.query(models.Task).filter(models.Task.user_id == user_id).all()


def get_tasks_by_status(db: Session, user_id: int, status: models.TaskStatus) -> List[models.Task]:
    return (
        db.query(models.Task)
        .filter(models.Task.user_id == user_id, models.Task.status == status)
        .all()
    )


def get_tasks_by_priority(db: Session, user_id: int, priority: models.Priority) -> List[models.Task]:
    return (
        db.query(models.Task)
        .filter(models.Task.user_id == user_id, models.Task.priority == priority)
        .all()
    )


def get_tasks_in_range(db: Session, user_id: int, start: datetime, end: datetime) -> List[models.Task]:
    return (
        db.query(models.Task)
        .filter(models.Task.user_id == user_id, models.Task.deadline.between(start, end))
        .order_by(models.Task.deadline.asc())
        .all()
    )


def get_task_for_owner(
    db: Session, task_id: int, user_id: int, for_update: bool = False
) -> Optional[models.Task]:
    query = db.query(models.Task).filter(models.Task.id == task_id, models.Task.user_id == user_id)
    if for_update:
        query = query.with_for_update()
    return query.first()


def get_tasks_by_ids_for_owner(
    db: Session, task_ids: Sequence[int], user_id: int, for_update: bool = False
) -> List[models.Task]:
    """Return the subset of task_ids owned by user_id; callers compare counts."""
    query = db.query(models.Task).filter(
        models.Task.id.in_(list(task_ids)), models.Task.user_id == user_id
    )
    if for_update:
        query = query.with_for_update()
    return query.all()


def get_overdue_tasks(db: Session, user_id: int, reference_time: datetime) -> List[models.Task]:
    return (
        db.query(models.Task)
        .filter(
            models.Task.user_id == user_id,
            models.Task.status.notin_(models.TERMINAL_STATUSES),
            models.Task.deadline < reference_time,
        )
        .all()
    )


def count_tasks_by_status(db: Session, user_id: int) -> Dict[models.TaskStatus, int]:
    rows = (
        db.query(models.Task.status, func.count(models.Task.id))
        .filter(models.Task.user_id == user_id)
        .group_by(models.Task.status)
        .all()
    )
    return {status: count for status, count in rows}


def save_task(db: Session, task: models.Task) -> models.Task:
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


def save_tasks(db: Session, tasks: List[models.Task]) -> List[models.Task]:
    db.add_all(tasks)
    db.commit()
    for task in tasks:
        db.refresh(task)
    return tasks


def delete_task(db: Session, task: models.Task):
    db.delete(task)
    db.commit()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def get_user_by_username(db: Session, username: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.username == username).first()


def username_exists(db: Session, username: str) -> bool:
    return db.query(models.User.id).filter(models.User.username == username).first() is not None


def email_exists(db: Session, email: str) -> bool:
    return db.query(models.User.id).filter(models.User.email == email).first() is not None


def create_user(db: Session, user: models.User) -> models.User:
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
