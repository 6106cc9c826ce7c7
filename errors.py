"""Error taxonomy shared by the portal services and the HTTP layer."""


class PortalError(Exception):
    """Base class for all portal errors."""

    status_code = 500
    public_message = None

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    @property
    def detail(self) -> str:
        return self.public_message or self.message


class ValidationError(PortalError):
    """Missing or malformed input. Raised before any mutation."""

    status_code = 400


class AuthenticationError(PortalError):
    """Unknown caller or bad credentials."""

    status_code = 401


class NotFoundError(PortalError):
    """Unknown identifier, or a record the caller does not own."""

    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(PortalError):
    """Status change not permitted from the current state."""

    status_code = 409

    def __init__(self, message: str, current: str = None, target: str = None):
        super().__init__(message)
        self.current = current
        self.target = target

    @classmethod
    def between(cls, entity: str, current: str, target: str) -> "InvalidTransitionError":
        return cls(
            f"Cannot change {entity} status from '{current}' to '{target}'",
            current=current,
            target=target,
        )


class PersistenceError(PortalError):
    """Storage unavailable or write failed. Internals are never exposed."""

    status_code = 500
    public_message = "Internal server error"
