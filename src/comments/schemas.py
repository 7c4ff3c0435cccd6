"""Pydantic schemas for the threaded comment view.

Response models for:
- Comment author projection
- Nested comment threads with reactions
"""

from pydantic import BaseModel, ConfigDict, Field

# ==============================================================================
# Enums (re-exported for convenience)
# ==============================================================================
from .models import ReactionType


# ==============================================================================
# Constants
# ==============================================================================
MAX_COMMENTABLE_ID_LENGTH = 255

# Replies nested below a root comment. Each level adds two JSON nesting levels
# (object and replies array) and the encoder stops at 254.
MAX_REPLY_DEPTH = 100
MAX_REPLY_DEPTH_LIMIT = 120


# ==============================================================================
# Response Schemas
# ==============================================================================


class CommentAuthorResponse(BaseModel):
    """Display projection of a comment author."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    picture_url: str


class CommentThreadResponse(BaseModel):
    """A comment with its replies nested recursively."""

    id: str
    body: str
    user: CommentAuthorResponse
    replies: list["CommentThreadResponse"] = Field(default_factory=list)
    reactions: dict[ReactionType, int] = Field(
        default_factory=dict,
        description="Reaction counts by type",
    )
    user_reactions: list[ReactionType] = Field(
        default_factory=list,
        description="Reaction types left by the acting user",
    )


CommentThreadResponse.model_rebuild()


class CommentListResponse(BaseModel):
    """Root comments of a commentable resource, replies nested."""

    data: list[CommentThreadResponse]


class ErrorResponse(BaseModel):
    """Error body returned by the global exception handlers."""

    error: bool = True
    message: str
    status_code: int
    request_id: str | None = None
