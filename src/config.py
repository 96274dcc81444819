"""Unified configuration loaded from .matrix-blog.toml, env vars, and CLI flags.

Loading order: defaults → TOML file → env vars → CLI flags.
"""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from matrix_blog.matrix.client import MatrixConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".matrix-blog.toml"
CONFIG_SEARCH_PATHS = [
    Path("."),
]
GLOBAL_CONFIG = Path.home() / ".config" / "matrix-blog" / "config.toml"


class MatrixSectionConfig(BaseModel):
    """[matrix] section."""

    homeserver_url: str = ""
    access_token: str = ""
    server_name: str = ""
    timeout: float = 30.0


class BlogSectionConfig(BaseModel):
    """[blog] section."""

    room_prefix: str = "blog."
    default_blog: str = ""
    delete_reason: str = "Deleting blog post"
    max_concurrency: int = 0  # 0 = unbounded


class MatrixBlogConfig(BaseModel):
    """Top-level configuration model."""

    matrix: MatrixSectionConfig = Field(default_factory=MatrixSectionConfig)
    blog: BlogSectionConfig = Field(default_factory=BlogSectionConfig)

    def to_matrix_config(self) -> MatrixConfig:
        """Convert to MatrixConfig for the Matrix client."""
        return MatrixConfig(
            homeserver_url=self.matrix.homeserver_url,
            access_token=self.matrix.access_token,
            server_name=self.matrix.server_name,
            timeout=self.matrix.timeout,
        )


# name -> (section, field)
ENV_VARS: dict[str, tuple[str, str]] = {
    "MATRIX_HOMESERVER_URL": ("matrix", "homeserver_url"),
    "MATRIX_ACCESS_TOKEN": ("matrix", "access_token"),
    "MATRIX_SERVER_NAME": ("matrix", "server_name"),
    "MATRIX_BLOG_PREFIX": ("blog", "room_prefix"),
    "MATRIX_BLOG_ID": ("blog", "default_blog"),
}

CLI_FLAGS: dict[str, tuple[str, str]] = {
    "homeserver": ("matrix", "homeserver_url"),
    "token": ("matrix", "access_token"),
    "server_name": ("matrix", "server_name"),
    "prefix": ("blog", "room_prefix"),
}


def load_config(path: str | Path | None = None) -> MatrixBlogConfig:
    """Load configuration, then overlay environment variables.

    The first file found wins: ``path`` if given, otherwise
    ``.matrix-blog.toml`` in one of ``CONFIG_SEARCH_PATHS``, otherwise the
    global ``~/.config/matrix-blog/config.toml``. An unreadable or invalid
    file is logged and treated as empty.
    """
    if path is not None:
        candidates = [Path(path)]
    else:
        candidates = [d / CONFIG_FILENAME for d in CONFIG_SEARCH_PATHS] + [GLOBAL_CONFIG]

    data: dict[str, Any] = {}
    for candidate in candidates:
        if candidate.is_file():
            data = _load_toml(candidate)
            break
    else:
        if path is not None:
            logger.warning("Config file not found: %s", path)

    config = MatrixBlogConfig.model_validate(data)
    return _overlay(config, ENV_VARS, os.environ)


def merge_cli_overrides(config: MatrixBlogConfig, **cli_kwargs: object) -> MatrixBlogConfig:
    """Overlay CLI flags onto the config. Flags left as None are skipped."""
    return _overlay(config, CLI_FLAGS, cli_kwargs)


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        logger.warning("Failed to parse %s: %s", path, exc)
        return {}
    logger.info("Loaded config from %s", path)
    return data


def _overlay(
    config: MatrixBlogConfig,
    fields: dict[str, tuple[str, str]],
    values: Mapping[str, object],
) -> MatrixBlogConfig:
    """Copy ``values[name]`` into ``section.field`` for every mapped, non-None name."""
    data = config.model_dump()
    for name, (section, field) in fields.items():
        value = values.get(name)
        if value is not None:
            data[section][field] = value
    return MatrixBlogConfig.model_validate(data)
