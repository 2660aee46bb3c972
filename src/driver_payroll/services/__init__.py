"""Driver payroll services."""

from driver_payroll.services.state_machine import PayrollStateMachine, PayrollStatus
from driver_payroll.services.adjustments import AdjustmentSet
from driver_payroll.services.advance_ledger import AdvanceCreation, AdvanceLedger
from driver_payroll.services.escrow_ledger import EscrowDecision, EscrowLedger, EscrowPosting
from driver_payroll.services.payment_config_service import PaymentConfigService
from driver_payroll.services.recurring_deductions import RecurringDeductionSet
from driver_payroll.services.aggregator import PeriodAggregator, PeriodCalculation
from driver_payroll.services.payroll_service import PayrollRecordService
from driver_payroll.services.batch_service import BatchPayrollService, BatchResult

__all__ = [
    "AdjustmentSet",
    "AdvanceCreation",
    "AdvanceLedger",
    "BatchPayrollService",
    "BatchResult",
    "EscrowDecision",
    "EscrowLedger",
    "EscrowPosting",
    "PaymentConfigService",
    "PeriodAggregator",
    "PeriodCalculation",
    "PayrollRecordService",
    "PayrollStateMachine",
    "PayrollStatus",
    "RecurringDeductionSet",
]
