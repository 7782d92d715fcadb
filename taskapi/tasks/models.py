from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Task(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    done: bool = False
    created_at: datetime  # UTC


class CreateTaskRequest(BaseModel):
    title: Optional[str] = None


class FieldError(BaseModel):
    field: str
    message: str


class ErrorResponse(BaseModel):
    error: str
    details: List[FieldError] = Field(default_factory=list)
