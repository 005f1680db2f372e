"""
Engine-wide exception hierarchy.

Services raise these types and nothing else for expected failures.
Blueprints register handlers against them once and get consistent
HTTP status codes everywhere:

    NotFoundError              -> 404
    ValidationError            -> 422
    ConflictError              -> 409
    TransientIntegrationError  -> never reaches a blueprint; logged and swallowed

Usage:
    from docflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Distribution", resource_id=42)
    raise ValidationError("Invalid status", details={"status": "..."})
"""


class NotFoundError(Exception):
    """Raised when a referenced distribution, document or policy does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Distribution").
        resource_id: The PK that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails validation in the service layer.

    Rejected synchronously and never retried (unknown status, empty title,
    missing department, malformed command...).

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when a unique reference number could not be issued.

    Surfaced only after the bounded create-with-number retry loop is exhausted.

    Args:
        resource: Model name.
        field: The unique field that kept colliding.
        value: The last conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        if value is not None:
            msg = f"{resource} with {field}={value!r} already exists"
        else:
            msg = f"Could not allocate a unique {field} for {resource}"
        super().__init__(msg)


class TransientIntegrationError(Exception):
    """Raised by outbound integrations (real-time push) on delivery failure.

    Callers originating a state transition must catch and log it; it never
    propagates out of a routing or escalation operation.
    """

    def __init__(self, channel: str, message: str) -> None:
        self.channel = channel
        super().__init__(f"{channel}: {message}")
