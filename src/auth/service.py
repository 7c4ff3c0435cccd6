"""User profile service layer.

Business logic for:
- Profile lookups by id (single and batched)
- Resolving the acting user from an access token
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from src.auth.models import User
from src.auth.security import (
    DEFAULT_TOKEN_DELIMITER,
    DEFAULT_USER_KEY_PREFIX,
    MalformedTokenError,
    user_key_for_token,
)
from src.core.context import set_user_id
from src.core.errors import StorageError


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = structlog.get_logger(__name__)


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class AuthError(Exception):
    """Base authentication error."""

    def __init__(self, message: str, code: str = "auth_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class InvalidTokenError(AuthError):
    """Access token is malformed or does not belong to a known user."""

    def __init__(self, message: str = "Invalid access token."):
        super().__init__(message, "invalid_token")


# ==============================================================================
# Acting User
# ==============================================================================


@dataclass(frozen=True)
class Anonymous:
    """No credential was presented."""

    is_authenticated = False

    def owns(self, user_id: str) -> bool:
        return False


@dataclass(frozen=True)
class Authenticated:
    """Credential resolved to a known user."""

    user: User
    is_authenticated = True

    def owns(self, user_id: str) -> bool:
        return self.user.id == user_id


ActingUser = Anonymous | Authenticated

ANONYMOUS = Anonymous()


# ==============================================================================
# Auth Service
# ==============================================================================


class AuthService:
    """User profile reads and acting-user resolution."""

    # Batch reads are capped at 100 keys
    MAX_BATCH_SIZE = 100

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        token_delimiter: str = DEFAULT_TOKEN_DELIMITER,
        user_key_prefix: str = DEFAULT_USER_KEY_PREFIX,
        batch_size: int = MAX_BATCH_SIZE,
    ):
        """Initialize with Cassandra session.

        Args:
            session: Cassandra driver session with aexecute() support
            keyspace: Keyspace name for queries
            token_delimiter: Separator between user segment and token secret
            user_key_prefix: Namespace prefix of user primary keys
            batch_size: Maximum ids per batch read
        """
        self.session = session
        self.keyspace = keyspace
        self.token_delimiter = token_delimiter
        self.user_key_prefix = user_key_prefix
        self.batch_size = max(1, min(batch_size, self.MAX_BATCH_SIZE))
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for better performance."""
        self._get_user_by_id = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.users WHERE id = ?"
        )
        self._get_users_by_ids = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.users WHERE id IN ?"
        )

    # ==========================================================================
    # User Operations
    # ==========================================================================

    async def find_by_id(self, user_id: str) -> User | None:
        """Find user by ID.

        Raises:
            StorageError: If the query fails
        """
        try:
            rows = await self.session.aexecute(self._get_user_by_id, [user_id])
            row = rows.one()
        except Exception as e:
            logger.error("user_fetch_failed", user_key=user_id, error=str(e))
            msg = f"Failed to fetch user {user_id}: {e}"
            raise StorageError(msg, "find_user") from e
        return User.from_row(row) if row else None

    async def batch_get(self, user_ids: Iterable[str]) -> list[User]:
        """Fetch the users with the given IDs.

        IDs are de-duplicated, sorted and read in chunks of ``batch_size``.
        Unknown IDs are simply absent from the result.

        Raises:
            StorageError: If any chunk fails
        """
        ids = sorted(set(user_ids))
        users: list[User] = []

        for start in range(0, len(ids), self.batch_size):
            chunk = ids[start : start + self.batch_size]
            try:
                rows = await self.session.aexecute(self._get_users_by_ids, [chunk])
                users.extend(User.from_row(row) for row in rows)
            except Exception as e:
                logger.error(
                    "users_batch_fetch_failed", chunk_size=len(chunk), error=str(e)
                )
                msg = f"Failed to batch-get users: {e}"
                raise StorageError(msg, "batch_get_users") from e

        logger.debug("users_batch_fetched", requested=len(ids), found=len(users))
        return users

    # ==========================================================================
    # Acting User
    # ==========================================================================

    async def resolve_acting_user(self, token: str | None) -> ActingUser:
        """Resolve the acting user for an optional access token.

        A missing token is an anonymous request, not an error.

        Raises:
            InvalidTokenError: If the token is malformed or names no known user
            StorageError: If the profile lookup fails
        """
        if token is None:
            return ANONYMOUS

        try:
            user_key = user_key_for_token(
                token, self.token_delimiter, self.user_key_prefix
            )
        except MalformedTokenError as e:
            raise InvalidTokenError from e

        user = await self.find_by_id(user_key)
        if user is None:
            logger.info("acting_user_not_found", user_key=user_key)
            raise InvalidTokenError

        set_user_id(user.id)
        return Authenticated(user)
