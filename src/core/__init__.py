# Core infrastructure
from src.core.context import (
    RequestContext,
    clear_context,
    get_commentable_id,
    get_context,
    get_request_id,
    get_trace_id,
    get_user_id,
    set_commentable_id,
    set_request_id,
    set_trace_id,
    set_user_id,
)
from src.core.logging import configure_structlog, get_logger
from src.core.middleware import RequestContextMiddleware


__all__ = [
    "RequestContext",
    "RequestContextMiddleware",
    "clear_context",
    "configure_structlog",
    "get_commentable_id",
    "get_context",
    "get_logger",
    "get_request_id",
    "get_trace_id",
    "get_user_id",
    "set_commentable_id",
    "set_request_id",
    "set_trace_id",
    "set_user_id",
]
