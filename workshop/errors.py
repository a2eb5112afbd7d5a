"""Typed application errors.

Each error knows its HTTP status and machine-readable code; the handlers in
``workshop.api`` turn them into the error envelope.
"""


class AppError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[dict] | None = None):
        super().__init__(message)
        self.details = details


class InvalidTransitionError(ValidationError):
    def __init__(self, entity: str, current, requested, allowed=(), message: str | None = None):
        names = ", ".join(sorted(s.value for s in allowed)) or "none"
        super().__init__(
            message or f"Cannot transition {entity} from {_value(current)} to {_value(requested)}. Allowed: {names}",
            details=[{"field": "status", "message": f"allowed: {names}"}],
        )
        self.current = current
        self.requested = requested


class BadRequestError(AppError):
    status_code = 400
    code = "BAD_REQUEST"


class UnauthorizedError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(AppError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(message)


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id=None):
        if entity_id is None:
            message = f"{entity} not found"
        else:
            message = f"{entity} with id {entity_id} not found"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


def _value(status) -> str:
    return getattr(status, "value", str(status))
