"""Errors raised by the storage layer."""


class StoreError(Exception):
    """Base class for record store failures."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(StoreError):
    """Raised when a single-row lookup matched nothing."""


class RemoteError(StoreError):
    """Raised when the database reports an error (or returns an unexpected shape)."""
