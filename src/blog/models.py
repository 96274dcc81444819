"""Pure data models for blogs and posts.

All Pydantic models live here. No I/O, no business logic. Timestamps are
milliseconds since the epoch, as assigned by the homeserver.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Blogs
# ---------------------------------------------------------------------------


class Blog(BaseModel):
    """A blog, backed by a space room."""

    id: str
    title: str | None = None
    description: str | None = None


class BlogWithPosts(Blog):
    """A blog together with the metadata of every post linked to it."""

    posts: list[PostMetadata] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------


class PostMetadata(BaseModel):
    """Listing view of a post, backed by a child room of the blog space."""

    id: str
    title: str | None = None
    summary: str | None = None
    slug: str | None = None


class PostContent(BaseModel):
    """Body of a post, resolved through the room's content pointer."""

    text: str
    html: str
    created_ms: int
    edited_ms: int | None = None
    published_ms: int | None = None


class Post(PostMetadata, PostContent):
    """Metadata and content of a single post."""


class NewPost(BaseModel):
    """Input for creating a post."""

    title: str
    summary: str | None = None
    slug: str | None = None
    text: str
    html: str


class PostEdit(BaseModel):
    """Partial update of a post. Unset fields are left untouched.

    An empty ``slug`` removes the post's alias. Content is only replaced
    when both ``text`` and ``html`` are given.
    """

    title: str | None = None
    summary: str | None = None
    slug: str | None = None
    text: str | None = None
    html: str | None = None


BlogWithPosts.model_rebuild()
