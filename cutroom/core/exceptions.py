"""
Platform-wide exception hierarchy.

Services raise these; ``cutroom.blueprints.errors`` registers one handler
per type so every endpoint maps them to the same status code and error
code.  Authorization denial is a normal verdict inside the permission
service; ``ForbiddenError`` only appears once a caller asks for the
verdict to be enforced.

Usage:
    from cutroom.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Task", resource_id=42)
    raise ValidationError("Comments are required", details={"comments": "required"})
"""


class CutroomError(Exception):
    """Base for every typed failure.  ``message`` is safe to show callers."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFoundError(CutroomError):
    """Raised when a referenced entity does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Project", "DeliveryJob").
        resource_id: The key that was looked up.  Logged, not echoed back.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found")

    def __str__(self):
        if self.resource_id is None:
            return self.message
        return f"{self.resource} id={self.resource_id} not found"


class ForbiddenError(CutroomError):
    """Raised when the authorization verdict for an action is deny."""

    def __init__(self, message: str = "Access denied", action: str | None = None) -> None:
        self.action = action
        super().__init__(message, details={"action": action} if action else None)


class ValidationError(CutroomError):
    """Raised when input is malformed or breaks a business rule (HTTP 400)."""


class ConflictError(CutroomError):
    """Raised on uniqueness races and state conflicts (HTTP 409)."""


class InvalidTransitionError(ConflictError):
    """Raised when a workflow action is not valid from the current status."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move from '{current}' to '{target}'",
            details={"current_status": current, "target_status": target},
        )


class TransientStoreError(CutroomError):
    """Raised when the store fails mid-transaction; the session is already rolled back."""

    def __init__(self, message: str = "Database temporarily unavailable") -> None:
        super().__init__(message)


class AuthenticationError(CutroomError):
    """Raised when credentials or a bearer token are missing or invalid (HTTP 401)."""
