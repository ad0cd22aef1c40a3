class AttendanceBotError(Exception):
    """Base exception for attendance and leave rule violations."""


class ValidationError(AttendanceBotError):
    """Raised when user input is malformed or violates a leave/attendance policy."""


class NotFoundError(AttendanceBotError):
    """Raised when an employee, record or event no longer exists."""


class InvalidTransitionError(AttendanceBotError):
    """Raised when a check-in record is not in a state that allows the requested transition."""


class AlreadyModeratedError(AttendanceBotError):
    """Raised when a leave event was already approved by another admin."""
