"""Database models for threaded comments.

Cassandra table definitions for:
- Comments: flat records per commentable resource (adjacency list)
- Reactions: one row per (comment, user, reaction type) per resource

Architecture: Adjacency List pattern for hierarchical comments
- replies_to references the parent comment (NULL for root comments)
- Both tables are partitioned by commentable_id so a whole thread is read
  with a single query per table
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class ReactionType(str, Enum):
    """Available reaction types for comments."""

    LIKE = "like"
    LOVE = "love"
    LAUGH = "laugh"
    SAD = "sad"
    ANGRY = "angry"


# Enumeration order, used to emit reaction counts deterministically
REACTION_ORDER = {reaction: index for index, reaction in enumerate(ReactionType)}


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

# Comments by commentable resource
# Clustering by id so a thread is returned in identifier order
COMMENTS_BY_COMMENTABLE_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.comments_by_commentable (
    commentable_id TEXT,
    id TEXT,
    user_id TEXT,
    body TEXT,
    replies_to TEXT,
    created_at TIMESTAMP,
    PRIMARY KEY ((commentable_id), id)
) WITH CLUSTERING ORDER BY (id ASC)
"""

# Reactions by commentable resource
# A user may leave several reaction types on the same comment
REACTIONS_BY_COMMENTABLE_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.reactions_by_commentable (
    commentable_id TEXT,
    comment_id TEXT,
    user_id TEXT,
    reaction_type TEXT,
    created_at TIMESTAMP,
    PRIMARY KEY ((commentable_id), comment_id, user_id, reaction_type)
)
"""

# All table definitions for initialization
COMMENTS_TABLES_CQL = [
    COMMENTS_BY_COMMENTABLE_TABLE_CQL,
    REACTIONS_BY_COMMENTABLE_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


@dataclass
class CommentRecord:
    """Comment as stored, before thread assembly."""

    commentable_id: str
    id: str
    user_id: str
    body: str
    replies_to: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "CommentRecord":
        """Create CommentRecord from Cassandra row."""
        return cls(
            commentable_id=row.commentable_id,
            id=row.id,
            user_id=row.user_id,
            body=row.body or "",
            replies_to=row.replies_to,
            created_at=row.created_at,
        )


@dataclass
class Reaction:
    """User reaction to a comment."""

    commentable_id: str
    comment_id: str
    user_id: str
    reaction_type: ReactionType
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "Reaction":
        """Create Reaction from Cassandra row.

        Raises:
            ValueError: If the stored reaction type is not a known ReactionType
        """
        return cls(
            commentable_id=row.commentable_id,
            comment_id=row.comment_id,
            user_id=row.user_id,
            reaction_type=ReactionType(row.reaction_type),
            created_at=row.created_at,
        )
