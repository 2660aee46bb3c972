"""Per-load driver share calculation."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from driver_payroll.calculators.types import (
    ZERO,
    LoadEarning,
    LoadEarningsResult,
    LoadInput,
    PaymentMethod,
    PaymentTerms,
)
from driver_payroll.errors import CalculationError

HUNDRED = Decimal("100")


def compute_load_earning(
    load: LoadInput, terms: PaymentTerms, employee_id: UUID | None = None
) -> LoadEarning:
    """Split one load between service fee, driver and company.

    No rounding happens here; amounts are rounded once when persisted.
    """
    gross = load.gross_amount
    miles = load.final_miles if load.final_miles is not None else ZERO
    service_fee = gross * terms.service_fee_percent / HUNDRED

    if terms.method == PaymentMethod.PERCENTAGE:
        after_fee = gross - service_fee
        driver_share = after_fee * terms.driver_percent / HUNDRED
        company_share = after_fee * terms.company_percent / HUNDRED
    elif terms.method == PaymentMethod.PAY_PER_MILE:
        # Fee is reported but does not reduce the per-mile rate
        driver_share = miles * terms.pay_per_mile_rate
        company_share = gross - service_fee - driver_share
    elif terms.method == PaymentMethod.FLAT_RATE:
        if load.driver_rate is None:
            raise CalculationError(
                f"Load {load.load_number} has no driver rate for FLAT_RATE pay",
                employee_id=employee_id,
                load_number=load.load_number,
            )
        driver_share = load.driver_rate
        company_share = gross - service_fee - driver_share
    else:
        raise CalculationError(f"Unknown payment method {terms.method!r}", employee_id=employee_id)

    return LoadEarning(
        load_number=load.load_number,
        load_id=load.load_id,
        gross_amount=gross,
        miles=miles,
        service_fee=service_fee,
        driver_share=driver_share,
        company_share=company_share,
        mileage_method=load.mileage_method,
    )


def compute_load_earnings(
    loads: Iterable[LoadInput],
    terms: PaymentTerms,
    employee_id: UUID | None = None,
) -> LoadEarningsResult:
    """Apply pay terms to each load, then sum the per-load results."""
    result = LoadEarningsResult()
    for load in loads:
        earning = compute_load_earning(load, terms, employee_id)
        result.per_load.append(earning)
        result.gross_revenue += earning.gross_amount
        result.total_miles += earning.miles
        result.service_fee += earning.service_fee
        result.base_pay += earning.driver_share
        result.company_share += earning.company_share
    return result
