"""Pure calculation functions used by the payroll services."""

from driver_payroll.calculators.advance_schedule import (
    build_repayment_schedule,
    outstanding_balance,
    summarize_advances,
)
from driver_payroll.calculators.escrow_policy import (
    apply_transaction,
    resolve_deposit_policy,
    suggest_deposit,
)
from driver_payroll.calculators.load_earnings import compute_load_earning, compute_load_earnings
from driver_payroll.calculators.mileage import MileageResolver, MileageResult
from driver_payroll.calculators.money import round_to_cents

__all__ = [
    "MileageResolver",
    "MileageResult",
    "apply_transaction",
    "build_repayment_schedule",
    "compute_load_earning",
    "compute_load_earnings",
    "outstanding_balance",
    "resolve_deposit_policy",
    "round_to_cents",
    "suggest_deposit",
    "summarize_advances",
]
