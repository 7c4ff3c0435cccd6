"""Comment system module.

Provides the threaded comment view of a commentable resource:
- Flat comment and reaction records read per resource
- Reply tree assembly with author profiles
- Reaction tallies annotated with the acting user's reactions

Note: Router is not exported here to avoid circular imports.
Import directly from src.comments.router when needed.
"""

from .models import COMMENTS_TABLES_CQL, CommentRecord, Reaction, ReactionType
from .service import (
    BadRequestError,
    CommentError,
    CommentService,
    InternalError,
    UnauthorizedError,
)
from .thread import CommentNode, ListComments


__all__ = [
    "COMMENTS_TABLES_CQL",
    "BadRequestError",
    "CommentError",
    "CommentNode",
    "CommentRecord",
    "CommentService",
    "InternalError",
    "ListComments",
    "Reaction",
    "ReactionType",
    "UnauthorizedError",
]
