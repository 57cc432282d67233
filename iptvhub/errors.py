#=====================================
#            >>>> ERRORS <<<<
#=====================================
# errors.py
# Raised from routes and services; app.py turns them into JSON envelopes.


class AppError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None, errors=None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Validation failed"


class AuthenticationError(AppError):
    status_code = 401
    default_message = "Authentication failed"


class InvalidToken(AppError):
    # Same message for tampered, expired and malformed tokens
    status_code = 401
    default_message = "Invalid or expired stream token"


class Forbidden(AppError):
    status_code = 403
    default_message = "Access denied"


class NotFound(AppError):
    status_code = 404
    default_message = "Resource not found"


class Conflict(AppError):
    status_code = 409
    default_message = "Resource already exists"


class UpstreamUnavailable(AppError):
    status_code = 503
    default_message = "Service temporarily unavailable"
