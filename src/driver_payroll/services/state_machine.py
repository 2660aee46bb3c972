"""Payroll record state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from driver_payroll.errors import InvalidTransitionError


class PayrollStatus(str, Enum):
    """Individual payroll record status values."""

    DRAFT = "DRAFT"
    CALCULATED = "CALCULATED"
    REVIEWED = "REVIEWED"
    PROCESSED = "PROCESSED"
    PAID = "PAID"


class PayrollStateMachine:
    """State machine for payroll record status transitions.

    Allowed transitions:
    - DRAFT → CALCULATED
    - CALCULATED → CALCULATED (recalculate)
    - CALCULATED → REVIEWED
    - REVIEWED → CALCULATED (recalculate)
    - CALCULATED | REVIEWED → PROCESSED
    - PROCESSED → PAID
    - PROCESSED → REVIEWED (explicit unlock)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrollStatus.DRAFT: [PayrollStatus.CALCULATED],
        PayrollStatus.CALCULATED: [
            PayrollStatus.CALCULATED,
            PayrollStatus.REVIEWED,
            PayrollStatus.PROCESSED,
        ],
        PayrollStatus.REVIEWED: [PayrollStatus.CALCULATED, PayrollStatus.PROCESSED],
        PayrollStatus.PROCESSED: [PayrollStatus.PAID, PayrollStatus.REVIEWED],
        PayrollStatus.PAID: [],  # Terminal state
    }

    # Entering these statuses locks the record
    LOCKING_STATUSES = {PayrollStatus.PROCESSED, PayrollStatus.PAID}

    CALCULATION_ALLOWED = {
        PayrollStatus.DRAFT,
        PayrollStatus.CALCULATED,
        PayrollStatus.REVIEWED,
    }

    PROCESSABLE = {PayrollStatus.CALCULATED, PayrollStatus.REVIEWED}

    DELETABLE = {PayrollStatus.DRAFT, PayrollStatus.CALCULATED}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_calculate(cls, status: str) -> bool:
        return status in cls.CALCULATION_ALLOWED

    @classmethod
    def can_process(cls, status: str) -> bool:
        return status in cls.PROCESSABLE

    @classmethod
    def can_delete(cls, status: str) -> bool:
        return status in cls.DELETABLE

    @classmethod
    def locks_record(cls, status: str) -> bool:
        """Check if a record in this status must stay locked."""
        return status in cls.LOCKING_STATUSES

    @classmethod
    def is_unlock(cls, from_status: str, to_status: str) -> bool:
        """Check if this transition is an unlock (PROCESSED → REVIEWED)."""
        return from_status == PayrollStatus.PROCESSED and to_status == PayrollStatus.REVIEWED

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])
