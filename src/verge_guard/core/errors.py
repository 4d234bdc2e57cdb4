"""Typed application errors with user-facing messages."""

from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, message: str, user_message: str | None = None) -> None:
        super().__init__(message)
        self.user_message = user_message or message


class PersistenceFailure(AppError):
    pass


class EscalationFailure(AppError):
    pass


class StructuralQueryFailure(EscalationFailure):
    """The service status query errored instead of returning a status code."""


class OperationTimeoutError(EscalationFailure):
    pass


class ToggleDisabledError(AppError):
    pass


class GuardFailure(AppError):
    """A guarded toggle was rolled back."""

    def __init__(self, field: str, reason: str, user_message: str | None = None) -> None:
        super().__init__(f"{field}: {reason}", user_message=user_message or reason)
        self.field = field
        self.reason = reason


class BinaryMissingError(EscalationFailure):
    pass
