from typing import List

from taskapi.tasks.models import FieldError

MAX_TITLE_LEN = 200


def validate_create_task(title: str, max_len: int = MAX_TITLE_LEN) -> List[FieldError]:
    """Return per-field errors for a create request; empty list means valid."""
    errors: List[FieldError] = []

    if not title.strip():
        errors.append(FieldError(field="title", message="title is required"))

    if len(title) > max_len:
        errors.append(
            FieldError(field="title", message=f"title must be at most {max_len} characters")
        )

    return errors
