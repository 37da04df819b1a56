"""Persistence layer: asyncpg pool wrapper shared by all repositories."""

from notepress.storage.database import Database

__all__ = ["Database"]
