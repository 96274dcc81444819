"""Errors raised when rooms do not have the shape of a blog or post.

These signal a structural problem with the rooms themselves, so retrying
never helps. Protocol failures surface as ``MatrixError`` instead.
"""

from __future__ import annotations


class BlogServiceError(Exception):
    """Base class for blog/post structural violations."""


class MissingCreateEventError(BlogServiceError):
    def __init__(self, room_id: str) -> None:
        self.room_id = room_id
        super().__init__("Could not find room creation event")


class NotASpaceError(BlogServiceError):
    def __init__(self, room_id: str) -> None:
        self.room_id = room_id
        super().__init__("This room is not a space")


class BlogNotFoundError(BlogServiceError):
    """The requested room is missing from its own space summary."""

    def __init__(self, blog_id: str) -> None:
        self.blog_id = blog_id
        super().__init__("Could not find blog room")


class NoParentLinkageError(BlogServiceError):
    def __init__(self, post_id: str) -> None:
        self.post_id = post_id
        super().__init__("No parent linkage")


class MissingPostContentError(BlogServiceError):
    def __init__(self, post_id: str) -> None:
        self.post_id = post_id
        super().__init__("Could not find post content event")


class MissingTitleError(BlogServiceError):
    def __init__(self, post_id: str) -> None:
        self.post_id = post_id
        super().__init__("Could not find post title")
