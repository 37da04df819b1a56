"""Blogs: blog and post models plus their persistence."""

from notepress.blogs.credentials import (
    CredentialStore,
    NoteCredentials,
    PostgresCredentialStore,
)
from notepress.blogs.repository import BlogRepository, PostRepository
from notepress.blogs.schemas import Blog, Post, PostSource, SourceKind, slugify

__all__ = [
    "Blog",
    "BlogRepository",
    "CredentialStore",
    "NoteCredentials",
    "Post",
    "PostRepository",
    "PostSource",
    "PostgresCredentialStore",
    "SourceKind",
    "slugify",
]
