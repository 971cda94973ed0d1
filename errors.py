class ValidationError(ValueError):
    """Raised before any storage mutation when a domain invariant is violated."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class ReferentialError(Exception):
    """Wraps uniqueness and foreign-key violations reported by the database."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation
        self.message = message


class NotFoundError(LookupError):
    """Raised when a row addressed by id does not exist."""


class OrphanDeletionNotConfirmed(Exception):
    """Uncompleting an orphaned occurrence deletes the only record of it."""

    def __init__(self, completed_id: int, workout_name: str) -> None:
        super().__init__(
            f"completion {completed_id} ({workout_name}) has no template to "
            "revert to; deleting it is permanent and requires confirmation"
        )
        self.completed_id = completed_id
        self.workout_name = workout_name
