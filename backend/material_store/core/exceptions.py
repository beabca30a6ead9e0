"""Domain errors raised by the crud layer and mapped to HTTP responses in main.py"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(AppError):
    status_code = 404


class InvalidStateError(AppError):
    """Illegal status transition, e.g. receiving a PO that is already RECEIVED."""
    status_code = 400


class BusinessRuleError(AppError):
    status_code = 400


class AuthError(AppError):
    status_code = 401


class PermissionDeniedError(AppError):
    status_code = 403


class ConflictError(AppError):
    status_code = 409
