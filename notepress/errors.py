"""Root of the notepress exception hierarchy."""


class NotepressError(Exception):
    """Base class for every error notepress raises on purpose."""

    pass
