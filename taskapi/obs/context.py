"""Request context helpers using ContextVars.

The request id is set by RequestIdMiddleware and read by the logger and the
tracing middleware further down the chain.
"""

from contextvars import ContextVar
from typing import Optional


request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def clear_context() -> None:
    """Reset context variables to defaults."""
    request_id_var.set(None)
