"""Error types raised by the review core."""


class TutorError(Exception):
    """Base class for all rad_tutor errors."""


class ValidationError(TutorError):
    """Raised when a request is missing or carries an invalid field."""


class NotFoundError(TutorError):
    """Raised when a session, case or plan does not exist."""


class ConflictError(TutorError):
    """Raised when a request clashes with state already recorded."""


class PersistenceError(TutorError):
    """Raised when the underlying store fails; nothing was committed."""
