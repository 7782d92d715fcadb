from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from taskapi.obs.logger import JsonLogger, get_default_logger
from taskapi.tasks.errors import TitleRequired
from taskapi.tasks.models import CreateTaskRequest, ErrorResponse, FieldError
from taskapi.tasks.repository import TaskRepository
from taskapi.tasks.validation import MAX_TITLE_LEN, validate_create_task

router = APIRouter(tags=["tasks"])


def get_repository(request: Request) -> TaskRepository:
    return request.app.state.repository


def get_logger(request: Request) -> JsonLogger:
    return getattr(request.app.state, "logger", None) or get_default_logger()


def error_response(status_code: int, error: str, details: Optional[List[FieldError]] = None) -> JSONResponse:
    body = ErrorResponse(error=error, details=details or [])
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_defaults=True))


@router.post("/tasks", status_code=201)
async def create_task(
    request: Request,
    repo: TaskRepository = Depends(get_repository),
    logger: JsonLogger = Depends(get_logger),
):
    raw = await request.body()
    try:
        payload = CreateTaskRequest.model_validate_json(raw or b"")
    except ValidationError:
        return error_response(400, "invalid_json")

    title = payload.title or ""
    field_errors = validate_create_task(title, MAX_TITLE_LEN)
    if field_errors:
        return error_response(422, "validation_error", field_errors)

    try:
        task = await run_in_threadpool(repo.create, title)
    except TitleRequired:
        return error_response(
            422, "validation_error", [FieldError(field="title", message="title is required")]
        )
    except Exception as e:
        logger.exception("task_create_failed", e)
        return error_response(500, "unexpected_error")

    return JSONResponse(status_code=201, content=task.model_dump(mode="json"))


@router.get("/tasks")
async def list_tasks(
    repo: TaskRepository = Depends(get_repository),
    logger: JsonLogger = Depends(get_logger),
):
    try:
        tasks = await run_in_threadpool(repo.list)
    except Exception as e:
        logger.exception("task_list_failed", e)
        return error_response(500, "unexpected_error")

    return JSONResponse(status_code=200, content=[t.model_dump(mode="json") for t in tasks])
