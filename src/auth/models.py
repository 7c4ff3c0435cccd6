"""Database models for user profiles.

Cassandra table definitions for:
- Users: profile records keyed by their namespaced id (``USER_<...>``)

Note: Uses cassandra-driver directly (not ORM) for flexibility.
Tables are created via CQL statements in the database module.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any


USER_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.users (
    id TEXT PRIMARY KEY,
    name TEXT,
    email TEXT,
    picture_url TEXT,
    created_at TIMESTAMP
)
"""

# All CQL statements for table setup
AUTH_TABLES_CQL = [
    USER_TABLE_CQL,
]


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


@dataclass
class User:
    """User profile record.

    Attributes:
        id: Namespaced identifier (``USER_`` prefix)
        name: Display name
        email: Contact address (never exposed by the comments API)
        picture_url: Avatar URL
        created_at: Account creation timestamp
    """

    id: str
    name: str
    picture_url: str
    email: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "User":
        """Create User from Cassandra row."""
        return cls(
            id=row.id,
            name=row.name or "",
            picture_url=row.picture_url or "",
            email=row.email,
            created_at=ensure_utc_aware(row.created_at),
        )

