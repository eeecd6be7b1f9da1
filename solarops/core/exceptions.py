"""
Platform-wide exception hierarchy.

Services raise these; blueprints register one handler per type and map
them to HTTP status codes (see ``solarops.blueprints.register_error_handlers``).

Usage:
    from solarops.core.exceptions import NotFoundError, PreconditionFailedError

    raise NotFoundError(resource="Report", resource_id="ab12")
    raise PreconditionFailedError("confirmConcrete", expected=["InProgress"], actual="Draft")
"""


class NotFoundError(Exception):
    """Raised when a report, stage, note or user does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Report", "AdminNote").
        resource_id: The key that was looked up.
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
    """Raised when well-formed input violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when a write lost a race against another writer (stale version).

    Maps to HTTP 409.  The core never retries; the caller may reload and retry.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} id={resource_id} was modified concurrently; reload and retry")


class PreconditionFailedError(Exception):
    """Raised when a workflow transition is invoked from the wrong state.

    Args:
        transition: Transition name (e.g. "confirmConcrete").
        expected: States from which the transition is allowed.
        actual: The report's current workflow state.
    """

    def __init__(self, transition: str, expected, actual: str | None) -> None:
        self.transition = transition
        self.expected = list(expected)
        self.actual = actual
        super().__init__(
            f"{transition} requires workflow state in {self.expected}, report is in {actual!r}"
        )


class UnknownStageError(Exception):
    """Raised when a stage id is outside the fixed stage vocabulary."""

    def __init__(self, stage_id: str, known_stages) -> None:
        self.stage_id = stage_id
        self.known_stages = sorted(known_stages)
        super().__init__(f"Unknown stage {stage_id!r}")


class UnauthorizedError(Exception):
    """Raised when a request carries no identifiable caller."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class ForbiddenError(Exception):
    """Raised when the Access Guard denies a capability to a known caller.

    Args:
        capability: The capability that was requested (e.g. "confirmConcrete").
        user_id: Caller id, for logs only.
    """

    def __init__(self, capability: str, user_id: int | None = None) -> None:
        self.capability = capability
        self.user_id = user_id
        super().__init__(f"User {user_id} is not allowed to perform '{capability}'")


class StoreUnavailableError(Exception):
    """Raised when the document store fails or times out.

    Maps to HTTP 503.  Nothing is committed to the repository when raised.
    """
