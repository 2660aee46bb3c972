"""ORM models."""

from driver_payroll.models.base import Base, TimestampMixin
from driver_payroll.models.employee import Employee, PaymentConfig
from driver_payroll.models.ledger import (
    Adjustment,
    AdvanceEntry,
    EscrowAccount,
    EscrowTransaction,
    RecurringDeduction,
)
from driver_payroll.models.operations import FuelTransaction, Load
from driver_payroll.models.payroll import (
    PAYROLL_MONEY_FIELDS,
    IndividualPayroll,
    PayrollAdjustmentLink,
    PayrollLoad,
    Paystub,
)

__all__ = [
    "PAYROLL_MONEY_FIELDS",
    "Adjustment",
    "AdvanceEntry",
    "Base",
    "Employee",
    "EscrowAccount",
    "EscrowTransaction",
    "FuelTransaction",
    "IndividualPayroll",
    "Load",
    "PaymentConfig",
    "PayrollAdjustmentLink",
    "PayrollLoad",
    "Paystub",
    "RecurringDeduction",
    "TimestampMixin",
]
