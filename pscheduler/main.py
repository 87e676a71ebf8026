import logging
from datetime import datetime
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import models, schemas
from .config import configure_logging
from .database import Base, engine, get_db
from .events import CompletionPublisher, default_publisher
from .exceptions import (
    InvalidCredentialsError,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
    ValidationFailedError,
)
from .security import get_current_username
from .services import AuthService, TaskService

configure_logging()
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

completion_publisher = default_publisher()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    completion_publisher.shutdown(wait=True)


app = FastAPI(title="pScheduler API", version="1.0.0", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_publisher() -> CompletionPublisher:
    return completion_publisher


def get_task_service(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    publisher: CompletionPublisher = Depends(get_publisher),
) -> TaskService:
    # Completion events go out after the response is sent.
    return TaskService(db, publisher, defer=background_tasks.add_task)


def get_auth_service(db: Session = Depends(get_db)) -> AuthService:
    return AuthService(db)


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

def _error(request: Request, code: int, error: str, message: str,
           validation_errors: Optional[Dict[str, str]] = None, headers=None) -> JSONResponse:
    body = schemas.ErrorResponse(
        timestamp=models.utcnow(),
        status=code,
        error=error,
        message=message,
        path=request.url.path,
        validation_errors=validation_errors,
    )
    return JSONResponse(
        status_code=code,
        content=body.model_dump(mode="json", exclude_none=True),
        headers=headers,
    )


@app.exception_handler(ResourceNotFoundError)
def handle_not_found(request: Request, exc: ResourceNotFoundError):
    logger.warning("Resource not found: %s", exc)
    return _error(request, status.HTTP_404_NOT_FOUND, "Not Found", str(exc))


@app.exception_handler(ResourceAlreadyExistsError)
def handle_already_exists(request: Request, exc: ResourceAlreadyExistsError):
    return _error(request, status.HTTP_409_CONFLICT, "Conflict", str(exc))


@app.exception_handler(InvalidCredentialsError)
def handle_invalid_credentials(request: Request, exc: InvalidCredentialsError):
    return _error(request, status.HTTP_401_UNAUTHORIZED, "Unauthorized", str(exc),
                  headers={"WWW-Authenticate": "Bearer"})


@app.exception_handler(ValidationFailedError)
def handle_validation_failed(request: Request, exc: ValidationFailedError):
    return _error(request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Unprocessable Entity",
                  "Validation failed for one or more fields.", {exc.field: exc.message})


@app.exception_handler(RequestValidationError)
def handle_request_validation(request: Request, exc: RequestValidationError):
    errors = {}
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"] if part != "body")
        errors[field or "body"] = err["msg"]
    return _error(request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Unprocessable Entity",
                  "Validation failed for one or more fields.", errors)


@app.exception_handler(Exception)
def handle_unexpected(request: Request, exc: Exception):
    logger.exception("Unexpected error occurred")
    return _error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error",
                  "An unexpected error occurred. Please try again later.")


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

auth_router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@auth_router.post("/register", response_model=schemas.AuthResponse, status_code=status.HTTP_201_CREATED)
def register(request: schemas.RegisterRequest, service: AuthService = Depends(get_auth_service)):
    return service.register(request)


@auth_router.post("/login", response_model=schemas.AuthResponse)
def login(request: schemas.LoginRequest, service: AuthService = Depends(get_auth_service)):
    return service.login(request)


# ---------------------------------------------------------------------------
# Tasks. Fixed paths are declared before /{task_id}.
# ---------------------------------------------------------------------------

tasks_router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])


@tasks_router.post("", response_model=schemas.TaskOut, status_code=status.HTTP_201_CREATED)
def create_task(task_in: schemas.TaskCreate,
                username: str = Depends(get_current_username),
                service: TaskService = Depends(get_task_service)):
    return service.create_task(task_in, username)


@tasks_router.get("", response_model=List[schemas.TaskOut])
def list_tasks(username: str = Depends(get_current_username),
               service: TaskService = Depends(get_task_service)):
    return service.get_all_tasks_for_user(username)


@tasks_router.get("/summary", response_model=schemas.TaskSummary)
def task_summary(username: str = Depends(get_current_username),
                 service: TaskService = Depends(get_task_service)):
    return service.get_task_summary(username)


@tasks_router.get("/overdue", response_model=List[schemas.TaskOut])
def overdue_tasks(reference_time: Optional[datetime] = None,
                  username: str = Depends(get_current_username),
                  service: TaskService = Depends(get_task_service)):
    return service.get_overdue_tasks(username, reference_time)


@tasks_router.get("/range", response_model=List[schemas.TaskOut])
def tasks_in_range(start: datetime, end: datetime,
                   username: str = Depends(get_current_username),
                   service: TaskService = Depends(get_task_service)):
    return service.get_tasks_in_range(start, end, username)


@tasks_router.get("/status/{task_status}", response_model=List[schemas.TaskOut])
def tasks_by_status(task_status: models.TaskStatus,
                    username: str = Depends(get_current_username),
                    service: TaskService = Depends(get_task_service)):
    return service.get_tasks_by_status(task_status, username)


@tasks_router.get("/priority/{priority}", response_model=List[schemas.TaskOut])
def tasks_by_priority(priority: models.Priority,
                      username: str = Depends(get_current_username),
                      service: TaskService = Depends(get_task_service)):
    return service.get_tasks_by_priority(priority, username)


@tasks_router.patch("/complete", response_model=List[schemas.TaskOut])
def complete_tasks(request: schemas.BulkCompleteRequest,
                   username: str = Depends(get_current_username),
                   service: TaskService = Depends(get_task_service)):
    return service.mark_tasks_as_completed(request.task_ids, username)


@tasks_router.get("/{task_id}", response_model=schemas.TaskOut)
def get_task(task_id: int,
             username: str = Depends(get_current_username),
             service: TaskService = Depends(get_task_service)):
    return service.get_task_by_id(task_id, username)


@tasks_router.put("/{task_id}", response_model=schemas.TaskOut)
def update_task(task_id: int, task_in: schemas.TaskUpdate,
                username: str = Depends(get_current_username),
                service: TaskService = Depends(get_task_service)):
    return service.update_task(task_id, task_in, username)


@tasks_router.patch("/{task_id}/complete", response_model=schemas.TaskOut)
def complete_task(task_id: int,
                  username: str = Depends(get_current_username),
                  service: TaskService = Depends(get_task_service)):
    return service.mark_task_as_completed(task_id, username)


@tasks_router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(task_id: int,
                username: str = Depends(get_current_username),
                service: TaskService = Depends(get_task_service)):
    service.delete_task(task_id, username)


app.include_router(auth_router)
app.include_router(tasks_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}
