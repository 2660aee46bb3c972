"""Resolution of adjustment rows into closed variants, and their totals."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from driver_payroll.calculators.types import (
    AdjustmentCategory,
    AdjustmentTotals,
    AdjustmentVariant,
    BonusAdjustment,
    CorrectionAdjustment,
    DeductionAdjustment,
    ReimbursementAdjustment,
)
from driver_payroll.errors import ValidationError

REVERSAL_TYPE = "REVERSAL"


def to_variant(
    category: str | AdjustmentCategory,
    adjustment_type: str | None,
    amount: Decimal,
    adjustment_id: UUID | None = None,
) -> AdjustmentVariant:
    """Map a category/type pair onto exactly one variant."""
    try:
        category = AdjustmentCategory(category)
    except ValueError as exc:
        raise ValidationError(
            f"Unknown adjustment category {category!r}", field="category"
        ) from exc
    kind = (adjustment_type or "OTHER").upper()

    if category == AdjustmentCategory.DEDUCTION:
        return DeductionAdjustment(adjustment_id, amount, deduction_type=kind)
    if category == AdjustmentCategory.REIMBURSEMENT:
        # Legacy entries booked bonuses as reimbursements
        if kind == "BONUS":
            return BonusAdjustment(adjustment_id, amount)
        return ReimbursementAdjustment(adjustment_id, amount, reimbursement_type=kind)
    if category == AdjustmentCategory.BONUS:
        return BonusAdjustment(adjustment_id, amount)
    return CorrectionAdjustment(adjustment_id, amount, is_overtime=kind == "OVERTIME")


def signed_amount(variant: AdjustmentVariant) -> Decimal:
    """Effect on net pay: deductions are negative, everything else positive."""
    if isinstance(variant, DeductionAdjustment):
        return -variant.amount
    return variant.amount


def opposite_category(category: str | AdjustmentCategory) -> AdjustmentCategory:
    """Category used by a reversal entry."""
    if AdjustmentCategory(category) == AdjustmentCategory.DEDUCTION:
        return AdjustmentCategory.CORRECTION
    return AdjustmentCategory.DEDUCTION


def split_adjustments(variants: Iterable[AdjustmentVariant]) -> AdjustmentTotals:
    totals = AdjustmentTotals()
    for variant in variants:
        if isinstance(variant, DeductionAdjustment):
            if variant.is_fuel:
                totals.fuel_deductions += variant.amount
            elif variant.is_advance_repayment:
                totals.advance_repayments += variant.amount
            else:
                totals.other_deductions += variant.amount
        elif isinstance(variant, ReimbursementAdjustment):
            totals.reimbursements += variant.amount
        elif isinstance(variant, BonusAdjustment):
            totals.bonus_amount += variant.amount
        elif isinstance(variant, CorrectionAdjustment):
            if variant.is_overtime:
                totals.overtime += variant.amount
            else:
                totals.other_earnings += variant.amount
        else:
            raise TypeError(f"Unhandled adjustment variant {type(variant).__name__}")
    return totals
