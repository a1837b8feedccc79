"""Custom exceptions for the Automail engine."""


class AutomailException(Exception):
    """Base exception for the Automail engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(AutomailException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class UnauthorizedError(AutomailException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize UnauthorizedError with 401 status code."""
        super().__init__(message, 401)


class ForbiddenError(AutomailException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize ForbiddenError with 403 status code."""
        super().__init__(message, 403)


class ValidationError(AutomailException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)


class ConflictError(AutomailException):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource conflict"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409)


# ─── Engine errors ─────────────────────────────────────────────
#
# Everything below is job-fatal: the scheduler records the message on the
# queue row, marks it failed and never retries it.


class JobFatalError(AutomailException):
    """A queue job cannot make progress and must be marked failed."""

    kind = "job_fatal"

    def __init__(self, message: str):
        super().__init__(message, 500)


class MissingCredentialError(JobFatalError):
    """Tenant has no usable provider credential in the vault."""

    kind = "missing_credential"


class MissingReferenceError(JobFatalError):
    """A template, sender, contact or automation referenced by a step is gone."""

    kind = "missing_reference"


class DeliveryError(JobFatalError):
    """The email provider rejected or failed the send."""

    kind = "delivery_failed"


class StepConfigError(JobFatalError):
    """A workflow step is malformed or of an unknown type."""

    kind = "step_config"
