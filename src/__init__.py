"""Blogs and posts stored as Matrix spaces and rooms."""

__version__ = "0.1.0"
