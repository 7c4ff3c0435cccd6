"""Tests for threaded comment assembly.

Covers the ListComments pipeline:
- identity resolution (anonymous and token-bearing requests)
- reply linking regardless of storage order
- author enrichment and reaction tallies
- error mapping for storage failures and inconsistent data
"""

import asyncio
import random
from collections.abc import Iterable

import pytest

from src.auth.models import User
from src.auth.service import ANONYMOUS, Authenticated, InvalidTokenError
from src.comments.models import CommentRecord, Reaction, ReactionType
from src.comments.schemas import MAX_REPLY_DEPTH, MAX_REPLY_DEPTH_LIMIT
from src.comments.service import BadRequestError, InternalError, UnauthorizedError
from src.comments.thread import ListComments
from src.core.context import get_commentable_id
from src.core.errors import StorageError
from tests.factories import (
    COMMENTABLE_ID,
    make_comment,
    make_reaction,
    make_reply_chain,
    make_user,
)


LIKE = ReactionType.LIKE
LOVE = ReactionType.LOVE
SAD = ReactionType.SAD


class FakeComments:
    """In-memory comment and reaction source."""

    def __init__(
        self,
        comments: Iterable[CommentRecord] = (),
        reactions: Iterable[Reaction] = (),
    ) -> None:
        self.comments = list(comments)
        self.reactions = list(reactions)
        self.comments_error: Exception | None = None
        self.reactions_error: Exception | None = None
        self.calls: list[str] = []

    async def list_comments(self, commentable_id: str) -> list[CommentRecord]:
        self.calls.append("comments")
        if self.comments_error:
            raise self.comments_error
        return [c for c in self.comments if c.commentable_id == commentable_id]

    async def list_reactions(self, commentable_id: str) -> list[Reaction]:
        self.calls.append("reactions")
        await asyncio.sleep(0)
        if self.reactions_error:
            raise self.reactions_error
        return [r for r in self.reactions if r.commentable_id == commentable_id]


class FakeUsers:
    """In-memory user source; tokens are looked up verbatim."""

    def __init__(
        self,
        users: Iterable[User] = (),
        tokens: dict[str, str] | None = None,
    ) -> None:
        self.users = {user.id: user for user in users}
        self.tokens = tokens or {}
        self.batch_error: Exception | None = None
        self.resolve_error: Exception | None = None
        self.batches: list[set[str]] = []

    async def batch_get(self, user_ids: Iterable[str]) -> list[User]:
        ids = set(user_ids)
        self.batches.append(ids)
        await asyncio.sleep(0)
        if self.batch_error:
            raise self.batch_error
        return [self.users[i] for i in sorted(ids) if i in self.users]

    async def resolve_acting_user(self, token: str | None):
        if self.resolve_error:
            raise self.resolve_error
        if token is None:
            return ANONYMOUS
        user = self.users.get(self.tokens.get(token, ""))
        if user is None:
            raise InvalidTokenError
        return Authenticated(user)


@pytest.fixture
def users() -> FakeUsers:
    return FakeUsers(
        users=[make_user("USER_1"), make_user("USER_2"), make_user("USER_3")],
        tokens={"1:secret": "USER_1", "2:secret": "USER_2"},
    )


@pytest.fixture
def comments() -> FakeComments:
    """Thread of the documented example: C1 with one reply C2."""
    return FakeComments(
        comments=[
            make_comment("C1", "USER_1", "hi"),
            make_comment("C2", "USER_2", "hello", replies_to="C1"),
        ],
        reactions=[
            make_reaction("C1", "USER_2", LIKE),
            make_reaction("C1", "USER_1", LIKE),
        ],
    )


async def build(
    comments: FakeComments,
    users: FakeUsers,
    token: str | None = None,
    parallel_fetch: bool = True,
    commentable_id: str | None = COMMENTABLE_ID,
) -> dict:
    pipeline = ListComments(comments, users, parallel_fetch=parallel_fetch)
    response = await pipeline.run(commentable_id, token)
    return response.model_dump(mode="json")


# ==============================================================================
# Happy paths
# ==============================================================================


class TestListComments:
    """Tests for the assembled thread."""

    @pytest.mark.asyncio
    async def test_authenticated_example(self, comments, users) -> None:
        """Acting user sees counts plus their own reactions."""
        result = await build(comments, users, token="1:secret")

        assert result == {
            "data": [
                {
                    "id": "C1",
                    "body": "hi",
                    "user": {
                        "id": "USER_1",
                        "name": "User_1",
                        "picture_url": "https://cdn.example.com/USER_1.png",
                    },
                    "replies": [
                        {
                            "id": "C2",
                            "body": "hello",
                            "user": {
                                "id": "USER_2",
                                "name": "User_2",
                                "picture_url": "https://cdn.example.com/USER_2.png",
                            },
                            "replies": [],
                            "reactions": {},
                            "user_reactions": [],
                        }
                    ],
                    "reactions": {"like": 2},
                    "user_reactions": ["like"],
                }
            ]
        }

    @pytest.mark.asyncio
    async def test_anonymous_has_counts_without_user_reactions(
        self, comments, users
    ) -> None:
        result = await build(comments, users)

        root = result["data"][0]
        assert root["reactions"] == {"like": 2}
        assert root["user_reactions"] == []
        assert root["replies"][0]["user_reactions"] == []

    @pytest.mark.asyncio
    async def test_empty_thread(self, users) -> None:
        """No comments: empty list and no profile lookup."""
        result = await build(FakeComments(), users)

        assert result == {"data": []}
        assert users.batches == []

    @pytest.mark.asyncio
    async def test_author_email_is_not_exposed(self, comments, users) -> None:
        result = await build(comments, users)

        assert set(result["data"][0]["user"]) == {"id", "name", "picture_url"}

    @pytest.mark.asyncio
    async def test_other_resources_are_ignored(self, comments, users) -> None:
        result = await build(comments, users, commentable_id="R2")

        assert result == {"data": []}

    @pytest.mark.asyncio
    async def test_commentable_id_is_bound_to_log_context(
        self, comments, users
    ) -> None:
        await build(comments, users)

        assert get_commentable_id() == COMMENTABLE_ID

    @pytest.mark.asyncio
    async def test_authors_are_fetched_once_each(self, users) -> None:
        comments = FakeComments(
            comments=[
                make_comment("C1", "USER_1"),
                make_comment("C2", "USER_1", replies_to="C1"),
                make_comment("C3", "USER_2"),
            ]
        )

        await build(comments, users)

        assert users.batches == [{"USER_1", "USER_2"}]


# ==============================================================================
# Ordering
# ==============================================================================


class TestOrdering:
    """Tests for deterministic output regardless of storage order."""

    @pytest.mark.asyncio
    async def test_reply_before_parent(self, users) -> None:
        """Replies returned ahead of their parent are still linked."""
        comments = FakeComments(
            comments=[
                make_comment("C3", "USER_3", replies_to="C2"),
                make_comment("C2", "USER_2", replies_to="C1"),
                make_comment("C1", "USER_1"),
            ]
        )

        result = await build(comments, users)

        assert [c["id"] for c in result["data"]] == ["C1"]
        child = result["data"][0]["replies"][0]
        assert child["id"] == "C2"
        assert child["replies"][0]["id"] == "C3"

    @pytest.mark.asyncio
    async def test_roots_and_replies_in_id_order(self, users) -> None:
        comments = FakeComments(
            comments=[
                make_comment("C5", "USER_1"),
                make_comment("C4", "USER_2", replies_to="C1"),
                make_comment("C1", "USER_1"),
                make_comment("C2", "USER_3", replies_to="C1"),
                make_comment("C3", "USER_2"),
            ]
        )

        result = await build(comments, users)

        assert [c["id"] for c in result["data"]] == ["C1", "C3", "C5"]
        assert [r["id"] for r in result["data"][0]["replies"]] == ["C2", "C4"]

    @pytest.mark.asyncio
    async def test_shuffled_input_gives_identical_output(self, users) -> None:
        records = [
            make_comment("C1", "USER_1"),
            make_comment("C2", "USER_2", replies_to="C1"),
            make_comment("C3", "USER_3", replies_to="C2"),
            make_comment("C4", "USER_1", replies_to="C1"),
            make_comment("C5", "USER_2"),
        ]
        reactions = [
            make_reaction("C1", "USER_1", SAD),
            make_reaction("C1", "USER_2", LIKE),
            make_reaction("C3", "USER_1", LOVE),
            make_reaction("C1", "USER_3", LIKE),
        ]
        expected = await build(FakeComments(records, reactions), users, "1:secret")

        rng = random.Random(7)
        for _ in range(5):
            rng.shuffle(records)
            rng.shuffle(reactions)
            result = await build(FakeComments(records, reactions), users, "1:secret")
            assert result == expected

    @pytest.mark.asyncio
    async def test_reaction_counts_in_enum_order(self, comments, users) -> None:
        comments.reactions = [
            make_reaction("C1", "USER_1", SAD),
            make_reaction("C1", "USER_2", LOVE),
            make_reaction("C1", "USER_3", LIKE),
        ]

        result = await build(comments, users)

        assert list(result["data"][0]["reactions"]) == ["like", "love", "sad"]

    @pytest.mark.asyncio
    async def test_builds_are_idempotent(self, comments, users) -> None:
        first = await build(comments, users, "1:secret")
        second = await build(comments, users, "1:secret")

        assert first == second


# ==============================================================================
# Reactions
# ==============================================================================


class TestReactions:
    """Tests for reaction tallies."""

    @pytest.mark.asyncio
    async def test_duplicate_reactions_are_kept(self, comments, users) -> None:
        comments.reactions = [
            make_reaction("C1", "USER_1", LIKE),
            make_reaction("C1", "USER_1", LIKE),
            make_reaction("C1", "USER_1", LOVE),
        ]

        result = await build(comments, users, "1:secret")

        root = result["data"][0]
        assert root["reactions"] == {"like": 2, "love": 1}
        assert root["user_reactions"] == ["like", "like", "love"]

    @pytest.mark.asyncio
    async def test_reactions_on_unknown_comments_are_dropped(
        self, comments, users
    ) -> None:
        comments.reactions.append(make_reaction("C404", "USER_1", LIKE))

        result = await build(comments, users, "1:secret")

        root = result["data"][0]
        assert root["reactions"] == {"like": 2}
        assert root["replies"][0]["reactions"] == {}

    @pytest.mark.asyncio
    async def test_user_reactions_belong_to_acting_user_only(
        self, comments, users
    ) -> None:
        comments.reactions.append(make_reaction("C2", "USER_1", SAD))

        result = await build(comments, users, "2:secret")

        root = result["data"][0]
        assert root["user_reactions"] == ["like"]
        assert root["replies"][0]["reactions"] == {"sad": 1}
        assert root["replies"][0]["user_reactions"] == []

    @pytest.mark.asyncio
    async def test_counts_cover_every_user(self, comments, users) -> None:
        """Each count is at least as large as the acting user's share."""
        comments.reactions.extend(
            [
                make_reaction("C2", "USER_1", LOVE),
                make_reaction("C2", "USER_3", LOVE),
            ]
        )

        result = await build(comments, users, "1:secret")

        reply = result["data"][0]["replies"][0]
        assert reply["reactions"] == {"love": 2}
        for reaction in reply["user_reactions"]:
            assert reply["reactions"][reaction] >= reply["user_reactions"].count(
                reaction
            )


# ==============================================================================
# Fetch scheduling
# ==============================================================================


class TestFetchScheduling:
    """Tests for parallel and sequential fetches."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("parallel_fetch", [True, False])
    async def test_same_result_either_way(
        self, comments, users, parallel_fetch
    ) -> None:
        result = await build(
            comments, users, "1:secret", parallel_fetch=parallel_fetch
        )

        assert result["data"][0]["reactions"] == {"like": 2}

    @pytest.mark.asyncio
    async def test_sequential_fetch_stops_at_first_failure(
        self, comments, users
    ) -> None:
        users.batch_error = StorageError("users down", "batch_get_users")

        with pytest.raises(InternalError):
            await build(comments, users, parallel_fetch=False)

        assert comments.calls == ["comments"]

    @pytest.mark.asyncio
    async def test_parallel_fetch_waits_for_both_before_failing(
        self, comments, users
    ) -> None:
        users.batch_error = StorageError("users down", "batch_get_users")

        with pytest.raises(InternalError, match="users down"):
            await build(comments, users, parallel_fetch=True)

        assert comments.calls == ["comments", "reactions"]

    @pytest.mark.asyncio
    async def test_pipeline_is_single_use(self, comments, users) -> None:
        pipeline = ListComments(comments, users)
        await pipeline.run(COMMENTABLE_ID)

        with pytest.raises(RuntimeError):
            await pipeline.run(COMMENTABLE_ID)


# ==============================================================================
# Thread depth
# ==============================================================================


def chain_ids(root: dict) -> list[str]:
    """Ids along a single-reply chain, checking each level has one reply."""
    ids = [root["id"]]
    node = root
    while node["replies"]:
        assert len(node["replies"]) == 1
        node = node["replies"][0]
        ids.append(node["id"])
    return ids


class TestThreadDepth:
    """Tests for long reply chains."""

    @pytest.mark.asyncio
    async def test_chain_at_maximum_depth(self, users) -> None:
        records = make_reply_chain(MAX_REPLY_DEPTH + 1)
        comments = FakeComments(reversed(records))

        result = await build(comments, users)

        assert len(result["data"]) == 1
        assert chain_ids(result["data"][0]) == [r.id for r in records]

    @pytest.mark.asyncio
    async def test_chain_past_maximum_depth(self, users) -> None:
        records = make_reply_chain(MAX_REPLY_DEPTH + 2)

        with pytest.raises(InternalError) as exc:
            await build(FakeComments(records), users)

        assert exc.value.message == (
            f"Reply to comment with ID: {records[-2].id} exceeds the maximum "
            f"depth of {MAX_REPLY_DEPTH}. Referenced in comment: {records[-1].id}"
        )
        assert users.batches == []

    @pytest.mark.asyncio
    async def test_configured_depth(self, users) -> None:
        records = make_reply_chain(4)

        pipeline = ListComments(FakeComments(records), users, max_reply_depth=3)
        response = await pipeline.run(COMMENTABLE_ID)
        assert chain_ids(response.model_dump(mode="json")["data"][0]) == [
            r.id for r in records
        ]

        pipeline = ListComments(FakeComments(records), users, max_reply_depth=2)
        with pytest.raises(InternalError, match="maximum depth of 2"):
            await pipeline.run(COMMENTABLE_ID)

    @pytest.mark.asyncio
    async def test_depth_is_capped(self, users) -> None:
        records = make_reply_chain(MAX_REPLY_DEPTH_LIMIT + 2)
        pipeline = ListComments(FakeComments(records), users, max_reply_depth=10_000)

        assert pipeline.max_reply_depth == MAX_REPLY_DEPTH_LIMIT
        with pytest.raises(InternalError, match="maximum depth"):
            await pipeline.run(COMMENTABLE_ID)

    @pytest.mark.asyncio
    async def test_deepest_allowed_chain_with_siblings(self, users) -> None:
        """Breadth and depth together keep id order at every level."""
        records = make_reply_chain(MAX_REPLY_DEPTH_LIMIT + 1)
        records += [
            make_comment(f"D{index:05}", "USER_2", replies_to=record.id)
            for index, record in enumerate(records[:-1])
        ]
        pipeline = ListComments(
            FakeComments(records), users, max_reply_depth=MAX_REPLY_DEPTH_LIMIT
        )

        result = (await pipeline.run(COMMENTABLE_ID)).model_dump(mode="json")

        node = result["data"][0]
        for index in range(MAX_REPLY_DEPTH_LIMIT):
            assert [r["id"] for r in node["replies"]] == [
                f"C{index + 1:05}",
                f"D{index:05}",
            ]
            node = node["replies"][0]


# ==============================================================================
# Errors
# ==============================================================================


class TestIdentityErrors:
    """Tests for acting user resolution failures."""

    @pytest.mark.asyncio
    async def test_unknown_token_is_unauthorized(self, comments, users) -> None:
        with pytest.raises(UnauthorizedError) as exc:
            await build(comments, users, token="9:secret")

        assert exc.value.code == "unauthorized"
        assert exc.value.message == "Invalid access token."
        assert comments.calls == []

    @pytest.mark.asyncio
    async def test_identity_storage_failure_is_internal(
        self, comments, users
    ) -> None:
        users.resolve_error = StorageError("timeout", "find_user")

        with pytest.raises(InternalError):
            await build(comments, users, token="1:secret")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("commentable_id", [None, "", "   ", " R1", "x" * 256])
    async def test_invalid_commentable_id(
        self, comments, users, commentable_id
    ) -> None:
        with pytest.raises(BadRequestError) as exc:
            await build(comments, users, commentable_id=commentable_id)

        assert exc.value.code == "bad_request"
        assert comments.calls == []


class TestStorageErrors:
    """Tests for storage failures in the fetch stages."""

    @pytest.mark.asyncio
    async def test_comment_load_failure(self, comments, users) -> None:
        comments.comments_error = StorageError("boom", "list_comments")

        with pytest.raises(InternalError, match="boom"):
            await build(comments, users)

    @pytest.mark.asyncio
    async def test_reaction_load_failure(self, comments, users) -> None:
        comments.reactions_error = StorageError("boom", "list_reactions")

        with pytest.raises(InternalError, match="boom"):
            await build(comments, users)


class TestInconsistentData:
    """Tests for data that cannot form a thread."""

    @pytest.mark.asyncio
    async def test_missing_parent(self, users) -> None:
        comments = FakeComments(
            comments=[
                make_comment("C1", "USER_1"),
                make_comment("C2", "USER_2", replies_to="C9"),
            ]
        )

        with pytest.raises(InternalError) as exc:
            await build(comments, users)

        assert exc.value.message == (
            "Missing parent comment with ID: C9. Referenced in comment: C2"
        )

    @pytest.mark.asyncio
    async def test_missing_author(self, users) -> None:
        """An author absent from every profile batch fails serialization."""
        comments = FakeComments(
            comments=[
                make_comment("C1", "USER_1"),
                make_comment("C2", "USER_9", replies_to="C1"),
            ]
        )

        with pytest.raises(InternalError) as exc:
            await build(comments, users)

        assert exc.value.message == (
            "Couldn't find a user with ID: USER_9. Referenced in comment: C2"
        )

    @pytest.mark.asyncio
    async def test_duplicate_comment_id(self, users) -> None:
        comments = FakeComments(
            comments=[make_comment("C1", "USER_1"), make_comment("C1", "USER_2")]
        )

        with pytest.raises(InternalError, match="Duplicate comment"):
            await build(comments, users)

    @pytest.mark.asyncio
    async def test_self_reply(self, users) -> None:
        comments = FakeComments(
            comments=[make_comment("C1", "USER_1", replies_to="C1")]
        )

        with pytest.raises(InternalError, match="replies to itself"):
            await build(comments, users)

    @pytest.mark.asyncio
    async def test_reply_cycle(self, users) -> None:
        comments = FakeComments(
            comments=[
                make_comment("C1", "USER_1"),
                make_comment("C2", "USER_2", replies_to="C3"),
                make_comment("C3", "USER_3", replies_to="C2"),
            ]
        )

        with pytest.raises(InternalError, match="C2, C3"):
            await build(comments, users)
