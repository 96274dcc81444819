"""Typed async wrapper over the Matrix client-server API."""

from matrix_blog.matrix.base import MatrixAPI
from matrix_blog.matrix.client import (
    MatrixClient,
    MatrixConfig,
    MatrixError,
    create_matrix_client,
)
from matrix_blog.matrix.state import StateSnapshot

__all__ = [
    "MatrixAPI",
    "MatrixClient",
    "MatrixConfig",
    "MatrixError",
    "StateSnapshot",
    "create_matrix_client",
]
