"""Comment system API endpoints.

Provides routes for:
- Threaded comment view of a commentable resource
"""

import structlog
from fastapi import APIRouter, status

from src.auth.dependencies import AuthServiceDep, OptionalToken

from .dependencies import CommentServiceDep, handle_comment_error
from .schemas import CommentListResponse, ErrorResponse
from .service import CommentError


logger = structlog.get_logger(__name__)


router = APIRouter(prefix="/v1/commentables", tags=["comments"])


@router.get(
    "/{commentable_id}/comments",
    response_model=CommentListResponse,
    summary="List comment thread",
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    },
)
async def list_comments(
    commentable_id: str,
    comment_service: CommentServiceDep,
    auth_service: AuthServiceDep,
    token: OptionalToken,
) -> CommentListResponse:
    """Get every comment of a commentable resource as a reply tree.

    Root comments are listed in id order with their replies nested below.
    With a Bearer token, each comment also lists the reaction types the
    acting user left on it; anonymous requests only see the counts.
    """
    try:
        return await comment_service.list_thread(
            commentable_id=commentable_id,
            auth_token=token,
            auth_service=auth_service,
        )
    except CommentError as e:
        if e.code == "internal_error":
            logger.error("comment_thread_failed", error=e.message)
        raise handle_comment_error(e) from e
