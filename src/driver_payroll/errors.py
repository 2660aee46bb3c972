"""Exception taxonomy for the driver payroll engine."""

from __future__ import annotations

from typing import Any
from uuid import UUID


class PayrollEngineError(Exception):
    """Base class for all engine errors."""

    code = "PAYROLL_ERROR"

    def to_dict(self) -> dict[str, Any]:
        return {"detail": str(self), "code": self.code}


class ValidationError(PayrollEngineError):
    """Bad input shape or bounds."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class NotFoundError(PayrollEngineError):
    """Missing employee, record, account or ledger entry."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, key: Any):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} {key} not found")


class RecordLockedError(PayrollEngineError):
    """Attempted mutation of a finalized payroll record."""

    code = "RECORD_LOCKED"

    def __init__(self, payroll_id: UUID, message: str | None = None):
        self.payroll_id = payroll_id
        super().__init__(message or f"Payroll record {payroll_id} is locked")


class AlreadyLockedError(RecordLockedError):
    """Raised when processing a record that is already locked."""

    code = "ALREADY_LOCKED"

    def __init__(self, payroll_id: UUID):
        super().__init__(payroll_id, f"Payroll record {payroll_id} is already processed and locked")


class ConflictError(PayrollEngineError):
    """Duplicate period record, duplicate recurring deduction, held lock."""

    code = "CONFLICT"


class CalculationError(PayrollEngineError):
    """Data-quality problem that prevents a calculation."""

    code = "CALCULATION_ERROR"

    def __init__(
        self,
        message: str,
        employee_id: UUID | None = None,
        load_number: str | None = None,
    ):
        self.employee_id = employee_id
        self.load_number = load_number
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.employee_id:
            data["employee_id"] = str(self.employee_id)
        if self.load_number:
            data["load_number"] = self.load_number
        return data


class ExternalServiceError(PayrollEngineError):
    """Geocoding provider failure. Recovered internally, never surfaced."""

    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class InvalidTransitionError(PayrollEngineError):
    """Raised when an invalid status transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class NotCalculatedError(InvalidTransitionError):
    """Processing requested for a record that is not CALCULATED or REVIEWED."""

    code = "NOT_CALCULATED"

    def __init__(self, from_status: str):
        super().__init__(from_status, "PROCESSED", "record must be CALCULATED or REVIEWED")
