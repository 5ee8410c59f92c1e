"""
Platform-wide exception hierarchy.

Every service raises one of these typed errors instead of a bare
``Exception`` or a tuple-return error dict.  A single application-level
handler (registered in ``sigedoc.create_app``) maps each kind to its HTTP
status and machine-readable code, so blueprints never translate errors by
hand.

Usage:
    from sigedoc.core.exceptions import NotFoundError, PermissionDenied

    raise NotFoundError(resource="Document", resource_id=42)
    raise PermissionDenied("derive", required=["DERIVE"])
"""

from sigedoc.utils.errors import E


class WorkflowError(Exception):
    """Base class for every typed service-layer failure.

    Attributes:
        code:    Machine-readable error code (``E.*`` constant).
        status:  HTTP status the API layer should answer with.
        details: Optional structured payload for the response body.
    """

    code = E.INTERNAL
    status = 500

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(WorkflowError):
    """Raised when a referenced Document, Derivation, Area, Role or User does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Document", "Derivation").
        resource_id: The PK that was looked up.
    """

    code = E.NOT_FOUND
    status = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(WorkflowError):
    """Raised when a request struct fails field-level validation.

    ``details`` maps field names to a description of what is wrong.
    """

    code = E.VALIDATION_INVALID
    status = 400


class PermissionDenied(WorkflowError):
    """Caller lacks a capability bit or acts outside the holding area.

    Always surfaced, never retried automatically.
    """

    code = E.FORBIDDEN
    status = 403

    def __init__(
        self,
        action: str,
        *,
        required: list[str] | None = None,
        reason: str | None = None,
    ) -> None:
        self.action = action
        self.required = required or []
        self.reason = reason
        msg = f"Permission denied for '{action}'"
        if reason:
            msg += f": {reason}"
        details = {}
        if self.required:
            details["required"] = self.required
        super().__init__(msg, details)


class InvalidTransition(WorkflowError):
    """Requested transition is not legal from the entity's current status."""

    code = E.INVALID_TRANSITION
    status = 409

    def __init__(self, entity: str, action: str, current: str, reason: str | None = None) -> None:
        self.entity = entity
        self.action = action
        self.current_status = current
        msg = f"Cannot '{action}' {entity} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, {"current_status": current, "action": action})


class ConflictError(WorkflowError):
    """A concurrent mutation or duplicate was detected.

    Safe to retry once after reloading the current state.
    """

    code = E.CONFLICT_STATE
    status = 409


class PersistenceFailure(WorkflowError):
    """The database failed to commit; nothing was written."""

    code = E.DATABASE
    status = 500


class AuthenticationError(WorkflowError):
    """Missing, expired or invalid credentials."""

    code = E.UNAUTHORIZED
    status = 401
