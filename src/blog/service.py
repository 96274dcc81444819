"""Blog orchestration on top of Matrix rooms.

A blog is a space room. Each post is a child room of that space holding a
single message; a ``co.hirsz.blog.post_content`` state event points at that
message. Parent/child linkage uses the MSC1772 space events and a post's
slug is its canonical alias with the configured prefix stripped.

The service is stateless: every call goes to the homeserver. Independent
requests within one operation run concurrently and the first failure
propagates. Nothing is rolled back on failure.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable
from typing import Any, TypeVar

from matrix_blog.blog.errors import (
    BlogNotFoundError,
    MissingCreateEventError,
    MissingPostContentError,
    MissingTitleError,
    NoParentLinkageError,
    NotASpaceError,
)
from matrix_blog.blog.models import (
    Blog,
    BlogWithPosts,
    NewPost,
    Post,
    PostContent,
    PostEdit,
    PostMetadata,
)
from matrix_blog.matrix.base import MatrixAPI
from matrix_blog.matrix.client import MatrixError
from matrix_blog.matrix.models import (
    POST_CONTENT,
    ROOM_CANONICAL_ALIAS,
    ROOM_CREATE,
    ROOM_HISTORY_VISIBILITY,
    ROOM_MEMBER,
    ROOM_MESSAGE,
    ROOM_NAME,
    ROOM_TOPIC,
    SPACE_CHILD,
    SPACE_PARENT,
    CanonicalAliasEvent,
    CreateEvent,
    CreateRoomRequest,
    MemberEvent,
    NameEvent,
    PostContentEvent,
    StateEvent,
    TopicEvent,
)
from matrix_blog.matrix.state import StateSnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ROOM_PREFIX = "blog."
DEFAULT_DELETE_REASON = "Deleting blog post"

# Memberships that can still be kicked
_KICKABLE = ("join", "invite", "knock")


async def _gather(*awaitables: Awaitable[Any]) -> list[Any]:
    """Run ``awaitables`` concurrently and return their results in order.

    The first failure is re-raised unchanged, but only once every sibling
    has settled, so no request is still running when the caller closes its
    client. Siblings are not cancelled.
    """
    tasks = [asyncio.ensure_future(aw) for aw in awaitables]
    try:
        return await asyncio.gather(*tasks)
    except Exception as exc:
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and result is not exc:
                logger.debug("Concurrent request also failed: %r", result)
        raise


def _text_message(text: str, html: str) -> dict[str, Any]:
    return {
        "msgtype": "m.text",
        "format": "org.matrix.custom.html",
        "body": text,
        "formatted_body": html,
    }


class BlogService:
    """Reads and writes blogs and posts through a Matrix client.

    Args:
        matrix: Client used for every homeserver call.
        room_prefix: Prefix of the local part of post aliases.
        max_concurrency: Upper bound on content fetches in flight during
            ``get_full_posts``. None means unbounded.
    """

    def __init__(
        self,
        matrix: MatrixAPI,
        room_prefix: str = DEFAULT_ROOM_PREFIX,
        max_concurrency: int | None = None,
    ) -> None:
        self.matrix = matrix
        self.room_prefix = room_prefix
        self._slug_rx = re.compile(rf"^#{re.escape(room_prefix)}([^:]+)")
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None

    # ── Aliases ──────────────────────────────────────────────────

    def create_local_room_alias(self, name: str) -> str:
        return f"{self.room_prefix}{name}"

    def create_room_alias(self, slug: str) -> str:
        return f"#{self.create_local_room_alias(slug)}:{self.matrix.get_server_name()}"

    def get_slug_from_room_alias(self, alias: str) -> str | None:
        """Return the slug encoded in ``alias``, or None if it lacks the prefix."""
        match = self._slug_rx.match(alias)
        if not match:
            return None
        return match.group(1)

    # ── Blogs ────────────────────────────────────────────────────

    async def get_blog(self, blog_id: str) -> Blog:
        state = await self._get_space_state(blog_id)

        name = state.get(ROOM_NAME)
        topic = state.get(ROOM_TOPIC)
        return Blog(
            id=blog_id,
            title=name.content.name if isinstance(name, NameEvent) else None,
            description=topic.content.topic if isinstance(topic, TopicEvent) else None,
        )

    async def get_blog_with_posts(self, blog_id: str) -> BlogWithPosts:
        """Fetch a blog and its posts' metadata from the space summary.

        Posts keep the order the homeserver lists them in.
        """
        summary = await self.matrix.get_space_summary(blog_id)
        blog_room = next((room for room in summary.rooms if room.room_id == blog_id), None)
        if blog_room is None:
            raise BlogNotFoundError(blog_id)

        posts = [
            PostMetadata(
                id=room.room_id,
                title=room.name,
                summary=room.topic,
                slug=(
                    self.get_slug_from_room_alias(room.canonical_alias)
                    if room.canonical_alias
                    else None
                ),
            )
            for room in summary.rooms
            if room.room_id != blog_id
        ]

        return BlogWithPosts(
            id=blog_id,
            title=blog_room.name,
            description=blog_room.topic,
            posts=posts,
        )

    async def get_posts(self, blog_id: str) -> list[PostMetadata]:
        blog = await self.get_blog_with_posts(blog_id)
        return blog.posts

    async def get_full_posts(self, blog_id: str) -> list[Post]:
        """Fetch every post of a blog including its content."""
        posts = await self.get_posts(blog_id)
        contents = await _gather(
            *(self._limited(self._get_post_content(post.id)) for post in posts)
        )
        return [
            Post(**post.model_dump(), **content.model_dump())
            for post, content in zip(posts, contents, strict=True)
        ]

    # ── Posts: reads ─────────────────────────────────────────────

    async def get_post(self, post_id: str) -> Post:
        title, summary, slug, content = await _gather(
            self._get_post_title(post_id),
            self._get_post_summary(post_id),
            self._get_post_slug(post_id),
            self._get_post_content(post_id),
        )
        return Post(
            id=post_id,
            title=title,
            summary=summary,
            slug=slug,
            **content.model_dump(),
        )

    async def _get_post_title(self, post_id: str) -> str:
        try:
            content = await self.matrix.get_state_event(post_id, ROOM_NAME)
        except MatrixError as exc:
            if exc.is_not_found:
                raise MissingTitleError(post_id) from exc
            raise
        name = content.get("name")
        if name is None:
            raise MissingTitleError(post_id)
        return name

    async def _get_post_summary(self, post_id: str) -> str | None:
        content = await self._get_optional_state(post_id, ROOM_TOPIC)
        if content is None:
            return None
        return content.get("topic")

    async def _get_post_slug(self, post_id: str) -> str | None:
        content = await self._get_optional_state(post_id, ROOM_CANONICAL_ALIAS)
        alias = content.get("alias") if content else None
        if not alias:
            return None
        return self.get_slug_from_room_alias(alias)

    async def _get_post_content(self, post_id: str) -> PostContent:
        state = await self.matrix.get_state_events(post_id)

        pointer = state.get(POST_CONTENT)
        if not isinstance(pointer, PostContentEvent) or not pointer.content.event_id:
            raise MissingPostContentError(post_id)

        # A post counts as published from the moment it got its alias
        alias_event = state.get(ROOM_CANONICAL_ALIAS)
        published_ms = None
        if isinstance(alias_event, CanonicalAliasEvent) and alias_event.content.alias:
            published_ms = alias_event.origin_server_ts

        message = await self.matrix.get_event(post_id, pointer.content.event_id)
        content = message.text_content()

        return PostContent(
            text=content.body,
            html=content.formatted_body or "",
            created_ms=message.origin_server_ts,
            edited_ms=message.replaced_at,
            published_ms=published_ms,
        )

    # ── Posts: writes ────────────────────────────────────────────

    async def add_post(self, blog_id: str, post: NewPost) -> PostMetadata:
        """Create a post room, link it to the blog and store its content.

        The room is created first. The message and both linkage events are
        then sent concurrently, and the content pointer is written last so
        it always names an existing message.
        """
        post_id = await self.matrix.create_room(
            CreateRoomRequest(
                name=post.title,
                topic=post.summary,
                room_alias_name=self.create_local_room_alias(post.slug) if post.slug else None,
                preset="public_chat",
                initial_state=[
                    StateEvent(
                        type=ROOM_HISTORY_VISIBILITY,
                        content={"history_visibility": "world_readable"},
                    )
                ],
            )
        )
        logger.debug("Created room %s for post '%s'", post_id, post.title)

        server_name = self.matrix.get_server_name()
        message_id, _, _ = await _gather(
            self.matrix.send_message_event(post_id, ROOM_MESSAGE, _text_message(post.text, post.html)),
            self.matrix.send_state_event(blog_id, SPACE_CHILD, post_id, {"via": [server_name]}),
            self.matrix.send_state_event(
                post_id, SPACE_PARENT, blog_id, {"via": [server_name], "canonical": True}
            ),
        )

        await self.matrix.send_state_event(post_id, POST_CONTENT, "", {"event_id": message_id})
        logger.info("Added post %s to blog %s", post_id, blog_id)

        return PostMetadata(id=post_id, title=post.title, summary=post.summary, slug=post.slug)

    async def edit_post(self, post_id: str, edit: PostEdit) -> None:
        """Apply each field present in ``edit`` concurrently."""
        updates: list[Awaitable[object]] = []
        if edit.title is not None:
            updates.append(self.matrix.send_state_event(post_id, ROOM_NAME, "", {"name": edit.title}))
        if edit.summary is not None:
            updates.append(
                self.matrix.send_state_event(post_id, ROOM_TOPIC, "", {"topic": edit.summary})
            )
        if edit.slug is not None:
            updates.append(self._set_post_slug(post_id, edit.slug))
        if edit.text is not None and edit.html is not None:
            updates.append(self._set_post_content(post_id, edit.text, edit.html))

        await _gather(*updates)
        logger.info("Edited post %s (%d fields)", post_id, len(updates))

    async def _set_post_slug(self, post_id: str, slug: str) -> None:
        # An empty slug removes the alias
        new_alias = self.create_room_alias(slug) if slug else ""

        content = await self._get_optional_state(post_id, ROOM_CANONICAL_ALIAS)
        old_alias = (content or {}).get("alias") or ""
        if old_alias == new_alias:
            return

        # Bind the new alias before dropping the old one
        if new_alias:
            await self.matrix.add_room_alias(new_alias, post_id)
            await self.matrix.send_state_event(
                post_id, ROOM_CANONICAL_ALIAS, "", {"alias": new_alias}
            )
        if old_alias:
            await self.matrix.remove_room_alias(old_alias)

    async def _set_post_content(self, post_id: str, text: str, html: str) -> str:
        try:
            pointer = await self.matrix.get_state_event(post_id, POST_CONTENT)
        except MatrixError as exc:
            if exc.is_not_found:
                raise MissingPostContentError(post_id) from exc
            raise
        original_id = pointer.get("event_id")
        if not original_id:
            raise MissingPostContentError(post_id)

        return await self.matrix.send_message_event(
            post_id,
            ROOM_MESSAGE,
            {
                **_text_message(f"(edited) {text}", f"<p>(edited)</p> {html}"),
                "m.new_content": _text_message(text, html),
                "m.relates_to": {"rel_type": "m.replace", "event_id": original_id},
            },
        )

    async def delete_post(self, post_id: str, reason: str = DEFAULT_DELETE_REASON) -> None:
        """Detach a post from its blog and abandon its room.

        Both linkage events are redacted, the alias is removed and every
        other member is kicked while we still hold membership. Only then
        does the acting user leave.
        """
        state = await self.matrix.get_state_events(post_id)

        parent = state.find(SPACE_PARENT)
        if parent is None:
            raise NoParentLinkageError(post_id)

        current_user = await self.matrix.get_current_user()
        blog_id = parent.state_key

        operations: list[Awaitable[object]] = [
            self.matrix.redact_event(post_id, parent.event_id, reason),
            self._remove_child_link(blog_id, post_id, reason),
        ]

        alias_event = state.get(ROOM_CANONICAL_ALIAS)
        if isinstance(alias_event, CanonicalAliasEvent) and alias_event.content.alias:
            operations.append(self.matrix.remove_room_alias(alias_event.content.alias))

        for member in state.of_type(ROOM_MEMBER):
            if member.state_key == current_user:
                continue
            if isinstance(member, MemberEvent) and member.content.membership not in _KICKABLE:
                continue
            operations.append(self.matrix.kick_user(post_id, member.state_key, reason))

        await _gather(*operations)

        await self.matrix.leave_room(post_id)
        logger.info("Deleted post %s from blog %s", post_id, blog_id)

    async def _remove_child_link(self, blog_id: str, post_id: str, reason: str) -> None:
        blog_state = await self.matrix.get_state_events(blog_id)
        child = blog_state.get(SPACE_CHILD, post_id)
        if child is None:
            logger.warning("No child link for %s in blog %s, skipping", post_id, blog_id)
            return
        await self.matrix.redact_event(blog_id, child.event_id, reason)

    # ── Helpers ──────────────────────────────────────────────────

    async def _get_space_state(self, room_id: str) -> StateSnapshot:
        """Fetch room state, requiring the room to be a space."""
        state = await self.matrix.get_state_events(room_id)

        create = state.get(ROOM_CREATE)
        if not isinstance(create, CreateEvent):
            raise MissingCreateEventError(room_id)
        if not create.content.is_space:
            raise NotASpaceError(room_id)

        return state

    async def _get_optional_state(self, room_id: str, event_type: str) -> dict[str, Any] | None:
        """Fetch a state event's content, or None when the room has none."""
        try:
            return await self.matrix.get_state_event(room_id, event_type)
        except MatrixError as exc:
            if exc.is_not_found:
                return None
            raise

    async def _limited(self, awaitable: Awaitable[T]) -> T:
        if self._semaphore is None:
            return await awaitable
        async with self._semaphore:
            return await awaitable
