"""Request context management using contextvars.

Each request gets a unique ID plus optional trace, user and commentable
information that every log entry picks up without passing it explicitly.
"""

from contextvars import ContextVar, Token
from typing import Any
from uuid import uuid4


request_id_var: ContextVar[str] = ContextVar("request_id", default="")
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
commentable_id_var: ContextVar[str | None] = ContextVar(
    "commentable_id", default=None
)


def generate_request_id() -> str:
    """Generate a new unique request ID."""
    return str(uuid4())


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the request ID for the current context.

    Args:
        request_id: Optional request ID. If not provided, generates a new one.

    Returns:
        The request ID that was set.
    """
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


def get_trace_id() -> str | None:
    return trace_id_var.get()


def set_trace_id(trace_id: str | None) -> None:
    trace_id_var.set(trace_id)


def get_user_id() -> str | None:
    return user_id_var.get()


def set_user_id(user_id: str | None) -> None:
    """Set the acting user ID for the current context."""
    user_id_var.set(user_id)


def get_commentable_id() -> str | None:
    return commentable_id_var.get()


def set_commentable_id(commentable_id: str | None) -> None:
    """Set the commentable resource being read in the current context."""
    commentable_id_var.set(commentable_id)


def get_context() -> dict[str, Any]:
    """Get all non-empty context variables as a dictionary."""
    values = {
        "request_id": get_request_id(),
        "trace_id": get_trace_id(),
        "user_id": get_user_id(),
        "commentable_id": get_commentable_id(),
    }
    return {key: value for key, value in values.items() if value}


def clear_context() -> None:
    """Clear all context variables.

    Called at the end of each request so values never leak into the next one.
    """
    request_id_var.set("")
    trace_id_var.set(None)
    user_id_var.set(None)
    commentable_id_var.set(None)


class RequestContext:
    """Context manager for request scope.

    Usage:
        with RequestContext(request_id="...", commentable_id="..."):
            log.info("doing something")  # includes request_id, commentable_id
    """

    def __init__(
        self,
        request_id: str | None = None,
        trace_id: str | None = None,
        user_id: str | None = None,
        commentable_id: str | None = None,
    ) -> None:
        self.request_id = request_id
        self.trace_id = trace_id
        self.user_id = user_id
        self.commentable_id = commentable_id
        self._tokens: list[tuple[ContextVar, Token]] = []

    def __enter__(self) -> "RequestContext":
        """Enter context and set variables."""
        self._tokens.append(
            (request_id_var, request_id_var.set(self.request_id or generate_request_id()))
        )
        for var, value in (
            (trace_id_var, self.trace_id),
            (user_id_var, self.user_id),
            (commentable_id_var, self.commentable_id),
        ):
            if value is not None:
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, *_: object) -> None:
        """Exit context and restore previous values."""
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
