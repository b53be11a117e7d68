"""Custom exception classes for the application."""


class AppError(Exception):
    """Base application error class."""

    def __init__(self, message, status_code=400):
        """Initialize the error."""
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ValidationError(AppError):
    """Raised when user input fails validation."""

    def __init__(self, message="Validation failed."):
        """Initialize the error."""
        super().__init__(message, 400)


class AuthorizationError(AppError):
    """Raised when the current user may not perform an action."""

    def __init__(self, message="You are not authorized to perform this action."):
        """Initialize the error."""
        super().__init__(message, 403)


class DuplicateResourceError(AppError):
    """Raised when trying to create a resource that already exists."""

    def __init__(self, message="Resource already exists."):
        """Initialize the error."""
        super().__init__(message, 409)


class NotFoundError(AppError):
    """Raised when a resource is not found."""

    def __init__(self, message="Resource not found."):
        """Initialize the error."""
        super().__init__(message, 404)


class SystemicError(AppError):
    """Raised when a failure affects a whole operation rather than one target."""

    def __init__(self, message="The service is temporarily unavailable."):
        """Initialize the error."""
        super().__init__(message, 503)


class DatastoreUnavailableError(SystemicError):
    """Raised when Firestore cannot be reached or rejects a query."""

    def __init__(self, message="The datastore is unavailable."):
        """Initialize the error."""
        super().__init__(message)


class RateLimitError(AppError):
    """Raised when a caller has made too many requests in a time window."""

    def __init__(self, message="Too many attempts. Please try again later."):
        """Initialize the error."""
        super().__init__(message, 429)
