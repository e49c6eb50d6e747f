"""
Domain error taxonomy.

All of these are expected, recoverable conditions. Services raise them;
the portal facade turns them into failure outcomes with the message.
"""


class PortalError(Exception):
    """Base exception for expected domain failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PortalError):
    """Bad input shape or range."""
    pass


class NotFoundError(PortalError):
    """Unknown identifier."""
    pass


class ConflictError(PortalError):
    """Duplicate unique key or a guarded invariant would be broken."""
    pass


class DeliveryError(PortalError):
    """Notifier could not deliver a message."""
    pass


class AuthorizationError(PortalError):
    """Session is not allowed to perform the operation."""
    pass


def first_error_message(exc) -> str:
    """Human-readable message from a pydantic ValidationError."""
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "__root__")
    message = first.get("msg", "invalid value")
    # model_validator errors come through as "Value error, <text>"
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return f"{location}: {message}" if location else message
