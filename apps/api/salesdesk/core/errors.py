from __future__ import annotations

from typing import Any


class CRMError(Exception):
    """Base class for failures surfaced to the caller of a CRM operation."""

    status_code = 500
    code = "crm_error"

    def __init__(self, message: str, *, details: Any = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(CRMError):
    """Input is well formed but violates a business rule; ``details`` maps field -> messages."""

    status_code = 422
    code = "validation_error"

    def __init__(self, message: str, *, field: str | None = None, details: Any = None) -> None:
        if details is None and field is not None:
            details = {field: [message]}
        super().__init__(message, details=details)


class NotFoundError(CRMError):
    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id: Any) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found", details={"id": str(entity_id)})


class AuthorizationError(CRMError):
    """Requester role or ownership does not permit the operation."""

    status_code = 403
    code = "access_denied"


class ConflictError(CRMError):
    status_code = 409
    code = "conflict"


class OperationFailedError(CRMError):
    """A transaction was rolled back; no state changed."""

    status_code = 500
    code = "operation_failed"
