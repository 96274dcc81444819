"""Blogs as Matrix spaces, posts as their child rooms.

``BlogService`` translates blog and post operations into Matrix room and
state-event calls, and rebuilds blog/post views from room state.
"""

from matrix_blog.blog.errors import (
    BlogNotFoundError,
    BlogServiceError,
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
from matrix_blog.blog.service import BlogService

__all__ = [
    "Blog",
    "BlogNotFoundError",
    "BlogService",
    "BlogServiceError",
    "BlogWithPosts",
    "MissingCreateEventError",
    "MissingPostContentError",
    "MissingTitleError",
    "NewPost",
    "NoParentLinkageError",
    "NotASpaceError",
    "Post",
    "PostContent",
    "PostEdit",
    "PostMetadata",
]
