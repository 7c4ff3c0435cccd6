"""Comment system service layer.

Business logic for:
- Reading the flat comment and reaction records of a commentable resource
- Assembling them into the threaded view (see ``thread.ListComments``)
"""

from typing import TYPE_CHECKING

import structlog

from src.core.errors import StorageError

from .models import CommentRecord, Reaction
from .schemas import MAX_COMMENTABLE_ID_LENGTH, MAX_REPLY_DEPTH, CommentListResponse


if TYPE_CHECKING:
    from cassandra.cluster import Session

    from src.auth.service import AuthService


logger = structlog.get_logger(__name__)


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class CommentError(Exception):
    """Base comment error."""

    def __init__(self, message: str, code: str = "comment_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class BadRequestError(CommentError):
    """Request parameters are missing or malformed."""

    def __init__(self, message: str = "Invalid request parameters."):
        super().__init__(message, "bad_request")


class UnauthorizedError(CommentError):
    """Credential does not resolve to a known user."""

    def __init__(self, message: str = "Invalid access token."):
        super().__init__(message, "unauthorized")


class InternalError(CommentError):
    """Storage failure or inconsistent thread data."""

    def __init__(self, message: str = "Internal server error."):
        super().__init__(message, "internal_error")


# ==============================================================================
# Validation
# ==============================================================================


def validate_commentable_id(commentable_id: str | None) -> str:
    """Check the commentable id route parameter.

    Raises:
        BadRequestError: If the id is absent, blank, padded or too long
    """
    if not commentable_id or not commentable_id.strip():
        msg = "Invalid params: 'id' is required."
        raise BadRequestError(msg)
    if commentable_id != commentable_id.strip():
        msg = "Invalid params: 'id' must not contain surrounding whitespace."
        raise BadRequestError(msg)
    if len(commentable_id) > MAX_COMMENTABLE_ID_LENGTH:
        msg = f"Invalid params: 'id' exceeds {MAX_COMMENTABLE_ID_LENGTH} characters."
        raise BadRequestError(msg)
    return commentable_id


# ==============================================================================
# Comment Service
# ==============================================================================


class CommentService:
    """Service for reading comment threads."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        parallel_fetch: bool = True,
        max_reply_depth: int = MAX_REPLY_DEPTH,
    ):
        """Initialize with Cassandra session.

        Args:
            session: Cassandra driver session with aexecute() support
            keyspace: Keyspace name for queries
            parallel_fetch: Fetch authors and reactions concurrently
            max_reply_depth: Deepest reply level a thread may reach
        """
        self.session = session
        self.keyspace = keyspace
        self.parallel_fetch = parallel_fetch
        self.max_reply_depth = max_reply_depth
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient queries."""
        self._list_comments = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.comments_by_commentable
            WHERE commentable_id = ?
        """)

        self._list_reactions = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.reactions_by_commentable
            WHERE commentable_id = ?
        """)

    # ==========================================================================
    # Reads
    # ==========================================================================

    async def list_comments(self, commentable_id: str) -> list[CommentRecord]:
        """Get every comment of a commentable resource.

        Raises:
            StorageError: If the query fails
        """
        try:
            rows = await self.session.aexecute(self._list_comments, [commentable_id])
            return [CommentRecord.from_row(row) for row in rows]
        except Exception as e:
            logger.error("comments_fetch_failed", error=str(e))
            msg = f"Failed to list comments: {e}"
            raise StorageError(msg, "list_comments") from e

    async def list_reactions(self, commentable_id: str) -> list[Reaction]:
        """Get every reaction left on comments of a commentable resource.

        Raises:
            StorageError: If the query fails or a row holds an unknown type
        """
        try:
            rows = await self.session.aexecute(self._list_reactions, [commentable_id])
            return [Reaction.from_row(row) for row in rows]
        except Exception as e:
            logger.error("reactions_fetch_failed", error=str(e))
            msg = f"Failed to list reactions: {e}"
            raise StorageError(msg, "list_reactions") from e

    # ==========================================================================
    # Threads
    # ==========================================================================

    async def list_thread(
        self,
        commentable_id: str,
        auth_token: str | None,
        auth_service: "AuthService",
    ) -> CommentListResponse:
        """Build the threaded comment view of a commentable resource.

        Raises:
            BadRequestError: If the commentable id is invalid
            UnauthorizedError: If the token does not resolve
            InternalError: On storage failure, inconsistent thread data or a
                thread deeper than max_reply_depth
        """
        from .thread import ListComments  # noqa: PLC0415

        pipeline = ListComments(
            comments=self,
            users=auth_service,
            parallel_fetch=self.parallel_fetch,
            max_reply_depth=self.max_reply_depth,
        )
        return await pipeline.run(commentable_id, auth_token)
