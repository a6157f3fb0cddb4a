"""
LMS Assessment Engine - Service Errors
Failures raised by the services and mapped to HTTP responses by the app
"""


class AssessmentError(Exception):
    """Base assessment error."""
    pass


class NotFoundError(AssessmentError):
    """Test, question, attempt or answer does not exist (or was deleted)."""
    pass


class UnauthorizedError(AssessmentError):
    """Caller lacks the relationship the operation requires."""
    pass


class BadRequestError(AssessmentError):
    """A business rule rejects the request."""
    pass
