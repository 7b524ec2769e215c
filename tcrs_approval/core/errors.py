# ---------------------------------
# TYPED EXCEPTIONS
# ---------------------------------


class TCRSError(Exception):
    """Base for domain errors that map onto an HTTP status."""
    status_code = 500

    def __init__(self, message: str, details: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class ValidationError(TCRSError):
    status_code = 400


class InvalidStateError(TCRSError):
    """The request is not in a status that allows the transition."""
    status_code = 400


class AuthenticationError(TCRSError):
    status_code = 401


class AuthorizationError(TCRSError):
    status_code = 403


class NotFoundError(TCRSError):
    status_code = 404


class ServiceUnavailableError(TCRSError):
    """A backing service (blob storage) is not configured or reachable."""
    status_code = 503
