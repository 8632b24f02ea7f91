"""Error taxonomy shared by the identity store, audit log and workflow."""
import enum


class RejectionReason(str, enum.Enum):
    NOT_FOUND = 'NOT_FOUND'
    CONSTRAINT_VIOLATION = 'CONSTRAINT_VIOLATION'
    UNKNOWN_ROLE = 'UNKNOWN_ROLE'
    STORAGE_ERROR = 'STORAGE_ERROR'
    DUPLICATE = 'DUPLICATE'


class IAMError(Exception):
    """Base class. ``message`` is safe to show to an end user."""
    kind = None
    retryable = False

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class NotFound(IAMError):
    kind = RejectionReason.NOT_FOUND


class ConstraintViolation(IAMError):
    kind = RejectionReason.CONSTRAINT_VIOLATION


class UnknownRole(IAMError):
    kind = RejectionReason.UNKNOWN_ROLE


class Duplicate(IAMError):
    """The requested mapping change is already in effect."""
    kind = RejectionReason.DUPLICATE


class StorageError(IAMError):
    kind = RejectionReason.STORAGE_ERROR
    retryable = True

    def __init__(self, message='Storage is unavailable; retry the request.'):
        super().__init__(message)
