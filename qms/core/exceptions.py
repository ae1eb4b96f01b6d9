"""
Platform-wide exception hierarchy.

Services raise these; blueprints translate them to HTTP responses through
``register_error_handlers`` so every endpoint reports the same status codes.

Usage:
    from qms.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Improvement idea", resource_id=42)
    raise ValidationError("Title is required", details={"title": "missing"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Improvement idea", "NCR").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.message = f"{resource} not found"
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 400.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value.

    Maps to HTTP 409.

    Args:
        resource: Entity name.
        field: The unique field that would be duplicated.
        value: The conflicting value (logged, never echoed back).
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        self.message = f"{resource} with this {field} already exists"
        super().__init__(f"{resource} with {field}={value!r} already exists")


class PermissionDenied(Exception):
    """Raised when the caller's roles do not allow an operation. Maps to HTTP 403."""

    def __init__(self, message: str = "Insufficient permissions") -> None:
        self.message = message
        super().__init__(message)


class TransitionError(Exception):
    """Raised when a status transition is not allowed from the current status.

    Maps to HTTP 400.
    """

    def __init__(self, entity: str, action: str, current: str | None, message: str) -> None:
        self.entity = entity
        self.action = action
        self.current_status = current
        self.message = message
        super().__init__(message)
