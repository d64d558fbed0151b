"""
Typed failures raised by the record store, arrangement engine and message service.

Each error carries the HTTP status and machine-readable ``error_type`` the API
layer reports, so handlers never have to translate error strings.
"""

from fastapi import status


class GuestbookError(Exception):
    """Base class for every failure surfaced to guestbook callers."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_type: str = "guestbook_error"
    default_message: str = "Guestbook request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ContentRequired(GuestbookError):
    """Content was empty after trimming."""

    error_type = "content_required"
    default_message = "Content must not be empty"


class NothingToUpdate(GuestbookError):
    """An edit named neither title nor content."""

    error_type = "nothing_to_update"
    default_message = "Nothing to update: provide a title or content"


class NotFound(GuestbookError):
    status_code = status.HTTP_404_NOT_FOUND
    error_type = "not_found"
    default_message = "Message not found"

    def __init__(self, message_id: int | None = None, message: str | None = None) -> None:
        self.message_id = message_id
        if message is None and message_id is not None:
            message = f"Message {message_id} not found"
        super().__init__(message)


class InvalidBatchShape(GuestbookError):
    """A rearrangement payload failed structural validation."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_type = "invalid_batch_shape"
    default_message = "Rearrangement batch is malformed"


class StoreUnavailable(GuestbookError):
    """The database is unreachable or not configured."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_type = "store_unavailable"
    default_message = "Message store is unavailable"
