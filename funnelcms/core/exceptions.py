"""
Exception types raised by the service layer.

They subclass the builtin types the rest of the codebase already catches
(ValueError for bad input, RuntimeError for upstream failures), so callers
that only know about those keep working.
"""


class NotFoundError(ValueError):
    """A referenced row does not exist."""


class ConflictError(ValueError):
    """The operation would create a duplicate (slug, junction link, ...)."""


class InvalidTransitionError(ValueError):
    """A run status change that the lifecycle does not allow."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move run from '{current}' to '{requested}'")


class WebhookError(RuntimeError):
    """The external workflow service rejected or never received a request."""

    def __init__(self, message: str, status_code: int = None, details: str = None):
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class StorageError(RuntimeError):
    """File storage returned an error for a document download."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)
