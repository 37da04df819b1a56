"""Application configuration."""

from notepress.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
