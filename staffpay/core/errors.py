"""
Typed error hierarchy for staffpay.

Every error carries a machine-readable ``code`` and an HTTP ``status_code`` so the API
layer can render it without inspecting messages:

    StaffpayError
    +-- NotFoundError                 404
    +-- ValidationError               422
    +-- BusinessRuleError             400
    +-- ConflictError                 409
    |   +-- PeriodConflictError
    |   +-- StateConflictError
    |   +-- ConcurrencyConflictError
    +-- PersistenceError              500
"""
from typing import Any


class StaffpayError(Exception):
    code: str = "STAFFPAY_ERROR"
    status_code: int = 500

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "detail": self.message, **self.extra}


class NotFoundError(StaffpayError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(
            f"{entity_type} {entity_id} not found",
            entity_type=entity_type,
            entity_id=str(entity_id),
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationError(StaffpayError):
    code = "VALIDATION_ERROR"
    status_code = 422


class BusinessRuleError(StaffpayError):
    code = "BUSINESS_RULE_VIOLATION"
    status_code = 400


class ConflictError(StaffpayError):
    code = "CONFLICT"
    status_code = 409


class PeriodConflictError(ConflictError):
    """Raised when a period overlaps an existing record for the same worker."""

    code = "PERIOD_CONFLICT"

    def __init__(self, message: str, conflicting: Any = None, **extra: Any):
        if conflicting is not None:
            extra.setdefault("conflicting_id", str(conflicting.id))
            extra.setdefault("conflicting_number", getattr(conflicting, "number", None))
            extra.setdefault("conflicting_period", [
                conflicting.period_start.isoformat(),
                conflicting.period_end.isoformat(),
            ])
        super().__init__(message, **extra)
        self.conflicting = conflicting


class StateConflictError(ConflictError):
    code = "STATE_CONFLICT"


class ConcurrencyConflictError(ConflictError):
    """A record was modified by another request between read and write."""

    code = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently, retry the operation",
            entity_type=entity_type,
            entity_id=str(entity_id),
        )


class PersistenceError(StaffpayError):
    """
    A compensating write failed after a partial mutation.

    ``context`` holds everything needed to reconcile by hand (entity ids, amounts).
    """

    code = "PERSISTENCE_ERROR"
    status_code = 500

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, context=context or {})
        self.context = context or {}
