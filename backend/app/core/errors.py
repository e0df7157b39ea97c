"""
Domain errors for the notification core, plus the mapping used by API routes.

Suppression outcomes (rate-limited, duplicate, outside window) are not errors and never
raise; they show up as None / omitted results. Everything here is a real failure.
"""
from __future__ import annotations

from fastapi import HTTPException


class NotificationError(Exception):
    """Base class for notification core failures."""


class UserNotFoundError(NotificationError):
    """No user record: a notification context cannot be built at all."""

    def __init__(self, user_id: int):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class NotificationNotFoundError(NotificationError):
    def __init__(self, notification_id: int):
        super().__init__(f"Notification {notification_id} not found")
        self.notification_id = notification_id


class InvalidTransitionError(NotificationError):
    """Status change not allowed by the notification lifecycle."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move notification from {current} to {target}")
        self.current = current
        self.target = target


class InvalidSettingsError(NotificationError):
    pass


class InvalidFeedbackError(NotificationError):
    pass


class ContentGenerationError(NotificationError):
    """Text backend failed or returned unusable output. Never escapes the generator."""


class DeliveryError(NotificationError):
    """Transport could not deliver; the queue retries the notification."""


# ---------------------------------------------------------------------------
# HTTP mapping: (exception type, status_code). First match wins.
# ---------------------------------------------------------------------------

STATUS_BAD_REQUEST = 400
STATUS_NOT_FOUND = 404
STATUS_CONFLICT = 409
STATUS_INTERNAL_ERROR = 500

ERROR_RULES: list[tuple[type[Exception], int]] = [
    (UserNotFoundError, STATUS_NOT_FOUND),
    (NotificationNotFoundError, STATUS_NOT_FOUND),
    (InvalidTransitionError, STATUS_CONFLICT),
    (InvalidSettingsError, STATUS_BAD_REQUEST),
    (InvalidFeedbackError, STATUS_BAD_REQUEST),
]


def notification_error_to_http(exc: Exception) -> HTTPException:
    """
    Map an exception from the notification core into an HTTPException.
    Uses ERROR_RULES for known error types; otherwise returns 500 with the exception message.
    """
    for exc_type, status_code in ERROR_RULES:
        if isinstance(exc, exc_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=STATUS_INTERNAL_ERROR, detail=str(exc))
