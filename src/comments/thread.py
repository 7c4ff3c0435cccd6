"""Threaded comment assembly.

``ListComments`` turns three independently fetched, unordered collections
(comments, author profiles, reactions) into a nested reply tree annotated with
the acting user's own reactions. Stages run once, in order:

1. ``check_current_user``: resolve the optional access token
2. ``fetch_comments``: load comments and link replies to their parents
3. ``fetch_users``: load the profile of every comment author
4. ``fetch_reactions``: fold reactions into per-comment tallies
5. ``serialize``: walk the tree from the root comments downward

Stages 3 and 4 only depend on stage 2 and may run concurrently.
Any error aborts the whole pipeline; a partial tree is never returned.
"""

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

import structlog

from src.auth.models import User
from src.auth.service import ANONYMOUS, ActingUser, InvalidTokenError
from src.core.context import set_commentable_id
from src.core.errors import StorageError

from .models import REACTION_ORDER, CommentRecord, Reaction, ReactionType
from .schemas import (
    MAX_REPLY_DEPTH,
    MAX_REPLY_DEPTH_LIMIT,
    CommentAuthorResponse,
    CommentListResponse,
    CommentThreadResponse,
)
from .service import (
    InternalError,
    UnauthorizedError,
    validate_commentable_id,
)


logger = structlog.get_logger(__name__)


class CommentSource(Protocol):
    async def list_comments(self, commentable_id: str) -> list[CommentRecord]: ...

    async def list_reactions(self, commentable_id: str) -> list[Reaction]: ...


class UserSource(Protocol):
    async def batch_get(self, user_ids: Iterable[str]) -> list[User]: ...

    async def resolve_acting_user(self, token: str | None) -> ActingUser: ...


@dataclass
class CommentNode:
    """Working form of a comment while the thread is assembled."""

    id: str
    body: str
    user_id: str
    replies_to: str | None = None
    replies: list[str] = field(default_factory=list)
    reactions: dict[ReactionType, int] = field(default_factory=dict)
    user_reactions: list[ReactionType] = field(default_factory=list)

    @property
    def is_reply(self) -> bool:
        return self.replies_to is not None

    @classmethod
    def from_record(cls, record: CommentRecord) -> "CommentNode":
        return cls(
            id=record.id,
            body=record.body,
            user_id=record.user_id,
            replies_to=record.replies_to,
        )


class ListComments:
    """Single-use builder for the threaded view of one commentable resource."""

    def __init__(
        self,
        comments: CommentSource,
        users: UserSource,
        parallel_fetch: bool = True,
        max_reply_depth: int = MAX_REPLY_DEPTH,
    ) -> None:
        self.comments_source = comments
        self.users_source = users
        self.parallel_fetch = parallel_fetch
        self.max_reply_depth = max(1, min(max_reply_depth, MAX_REPLY_DEPTH_LIMIT))

        # Node table keyed by comment id; children are referenced by id
        self.comments: dict[str, CommentNode] = {}
        self.users: dict[str, CommentAuthorResponse] = {}
        self.current_user: ActingUser = ANONYMOUS
        self._used = False

    async def run(
        self, commentable_id: str | None, auth_token: str | None = None
    ) -> CommentListResponse:
        """Run every stage and return the serialized thread."""
        if self._used:
            msg = "ListComments instances are single-use"
            raise RuntimeError(msg)
        self._used = True

        commentable_id = validate_commentable_id(commentable_id)
        set_commentable_id(commentable_id)

        await self.check_current_user(auth_token)
        await self.fetch_comments(commentable_id)

        if self.parallel_fetch:
            # Both fetches finish before the first failure is raised
            results = await asyncio.gather(
                self.fetch_users(),
                self.fetch_reactions(commentable_id),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result
        else:
            await self.fetch_users()
            await self.fetch_reactions(commentable_id)

        response = self.serialize()
        logger.info(
            "comment_tree_built",
            comments=len(self.comments),
            roots=len(response.data),
            authenticated=self.current_user.is_authenticated,
        )
        return response

    # ==========================================================================
    # Stages
    # ==========================================================================

    async def check_current_user(self, auth_token: str | None) -> None:
        """Stage 1: resolve the acting user, anonymous when no token is given."""
        try:
            self.current_user = await self.users_source.resolve_acting_user(auth_token)
        except InvalidTokenError as e:
            raise UnauthorizedError(e.message) from e
        except StorageError as e:
            raise InternalError(e.message) from e

    async def fetch_comments(self, commentable_id: str) -> None:
        """Stage 2: load every comment and link replies to their parents."""
        try:
            records = await self.comments_source.list_comments(commentable_id)
        except StorageError as e:
            raise InternalError(e.message) from e

        self.parse_comments(records)
        logger.debug("comments_loaded", count=len(self.comments))

    async def fetch_users(self) -> None:
        """Stage 3: load the author profile of every loaded comment."""
        user_ids = {comment.user_id for comment in self.comments.values()}
        if not user_ids:
            return

        try:
            users = await self.users_source.batch_get(user_ids)
        except StorageError as e:
            raise InternalError(e.message) from e

        self.parse_users(users)

    async def fetch_reactions(self, commentable_id: str) -> None:
        """Stage 4: fold every reaction into its comment's tallies."""
        try:
            reactions = await self.comments_source.list_reactions(commentable_id)
        except StorageError as e:
            raise InternalError(e.message) from e

        self.parse_reactions(reactions)

    def serialize(self) -> CommentListResponse:
        """Stage 5: nest replies under the root comments, in id order."""
        return CommentListResponse(
            data=[
                self.serialize_comment(comment)
                for comment in self.comments.values()
                if not comment.is_reply
            ]
        )

    # ==========================================================================
    # Parsing
    # ==========================================================================

    def parse_comments(self, records: Iterable[CommentRecord]) -> None:
        """Build the node table, then link replies in ascending id order.

        Insertion and linking are separate passes, so replies may appear before
        their parents in ``records``.

        Raises:
            InternalError: On duplicate ids, self-replies, replies to a missing
                parent, replies that no root comment leads to, or replies nested
                deeper than ``max_reply_depth``
        """
        nodes: dict[str, CommentNode] = {}
        for record in records:
            if record.id in nodes:
                msg = f"Duplicate comment with ID: {record.id}."
                raise InternalError(msg)
            nodes[record.id] = CommentNode.from_record(record)

        # Iteration order of the node table is the serialization order
        self.comments = {comment_id: nodes[comment_id] for comment_id in sorted(nodes)}

        for comment in self.comments.values():
            if comment.replies_to is None:
                continue
            if comment.replies_to == comment.id:
                msg = f"Comment with ID: {comment.id} replies to itself."
                raise InternalError(msg)
            parent = self.comments.get(comment.replies_to)
            if parent is None:
                msg = (
                    f"Missing parent comment with ID: {comment.replies_to}. "
                    f"Referenced in comment: {comment.id}"
                )
                raise InternalError(msg)
            parent.replies.append(comment.id)

        self._check_reachable()

    def _check_reachable(self) -> None:
        """Every comment must hang below a root within ``max_reply_depth`` levels.

        A comment no root leads to is part of a reply cycle.
        """
        stack = [
            (comment.id, 0) for comment in self.comments.values() if not comment.is_reply
        ]
        reached: set[str] = set()
        while stack:
            comment_id, depth = stack.pop()
            if depth > self.max_reply_depth:
                msg = (
                    f"Reply to comment with ID: {self.comments[comment_id].replies_to} "
                    f"exceeds the maximum depth of {self.max_reply_depth}. "
                    f"Referenced in comment: {comment_id}"
                )
                raise InternalError(msg)
            reached.add(comment_id)
            stack.extend(
                (reply_id, depth + 1) for reply_id in self.comments[comment_id].replies
            )

        if len(reached) != len(self.comments):
            orphans = sorted(set(self.comments) - reached)
            msg = f"Reply cycle among comments with IDs: {', '.join(orphans)}."
            raise InternalError(msg)

    def parse_users(self, users: Iterable[User]) -> None:
        """Keep only the display projection of each fetched profile."""
        self.users = {
            user.id: CommentAuthorResponse(
                id=user.id, name=user.name, picture_url=user.picture_url
            )
            for user in users
        }

    def parse_reactions(self, reactions: Iterable[Reaction]) -> None:
        """Count reactions per comment and type, marking the acting user's.

        Reactions on comments that are not part of the thread are dropped.
        """
        dropped = 0
        for reaction in reactions:
            comment = self.comments.get(reaction.comment_id)
            if comment is None:
                dropped += 1
                continue

            comment.reactions[reaction.reaction_type] = (
                comment.reactions.get(reaction.reaction_type, 0) + 1
            )
            if self.current_user.owns(reaction.user_id):
                comment.user_reactions.append(reaction.reaction_type)

        if dropped:
            logger.debug("reactions_dropped", count=dropped)

    # ==========================================================================
    # Serialization
    # ==========================================================================

    def serialize_comment(self, comment: CommentNode) -> CommentThreadResponse:
        """Serialize a comment and every reply below it.

        Walks the node table with an explicit stack: authors are resolved
        top-down, and each node is built once all of its replies are.

        Raises:
            InternalError: If a comment author was not fetched
        """
        built: dict[str, CommentThreadResponse] = {}
        stack: list[tuple[CommentNode, CommentAuthorResponse | None]] = [
            (comment, None)
        ]
        while stack:
            node, user = stack.pop()
            if user is not None:
                built[node.id] = self._build_node(
                    node, user, [built.pop(reply_id) for reply_id in node.replies]
                )
                continue

            stack.append((node, self._author_of(node)))
            stack.extend(
                (self.comments[reply_id], None) for reply_id in reversed(node.replies)
            )

        return built[comment.id]

    def _author_of(self, comment: CommentNode) -> CommentAuthorResponse:
        user = self.users.get(comment.user_id)
        if user is None:
            msg = (
                f"Couldn't find a user with ID: {comment.user_id}. "
                f"Referenced in comment: {comment.id}"
            )
            raise InternalError(msg)
        return user

    @staticmethod
    def _build_node(
        comment: CommentNode,
        user: CommentAuthorResponse,
        replies: list[CommentThreadResponse],
    ) -> CommentThreadResponse:
        return CommentThreadResponse(
            id=comment.id,
            body=comment.body,
            user=user,
            replies=replies,
            reactions=dict(
                sorted(comment.reactions.items(), key=lambda item: REACTION_ORDER[item[0]])
            ),
            user_reactions=list(comment.user_reactions),
        )
