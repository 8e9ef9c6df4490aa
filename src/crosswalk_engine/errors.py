"""Error taxonomy for the crosswalk engine.

- NotFoundError - an unknown id was passed to an operation
- InvalidStateError - the operation is not allowed in the entity's current state
- ValidationError - input failed range or enum validation at an entry point

All errors derive from CrosswalkError so collaborators can catch one type.
"""


class CrosswalkError(Exception):
    """Base class for all crosswalk engine errors.

    Args:
        message: Human-readable description of the failure.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(CrosswalkError):
    """Raised when a referenced entity does not exist.

    Args:
        resource: Entity type name (e.g., "FrameworkVersion").
        resource_id: The identifier that could not be resolved.
    """

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} '{resource_id}' not found")
        self.resource = resource
        self.resource_id = resource_id


class InvalidStateError(CrosswalkError):
    """Raised when an operation is illegal for the entity's current state."""


class ValidationError(CrosswalkError):
    """Raised when an input value is out of range or not a recognized value.

    Args:
        message: Human-readable description of the failure.
        field: Name of the offending field.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field
