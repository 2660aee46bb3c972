"""Advance amortization and ledger aggregation.

Both functions are pure: they take values and return values, and never
touch storage.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from driver_payroll.calculators.money import ceil_to_cents, floor_to_cents, round_to_cents
from driver_payroll.calculators.periods import next_week_start
from driver_payroll.calculators.types import (
    ZERO,
    AdvanceEntryType,
    AdvanceLedgerLine,
    AdvanceStatus,
    AdvanceSummary,
    RepaymentInstallment,
    RepaymentSchedule,
)
from driver_payroll.errors import ValidationError


def build_repayment_schedule(
    amount: Decimal, weeks_to_repay: int, advance_date: date
) -> RepaymentSchedule:
    """Split an advance into weekly repayments starting the week after it is issued.

    Every installment is the weekly amount (amount / weeks, rounded up to
    the cent) except the last, which takes whatever is left so the
    installments sum to exactly the advance amount. When rounding up
    would leave nothing for the last week (small amounts over long terms,
    e.g. $2 over 26 weeks) the weekly amount is rounded down instead and
    the last installment carries the larger remainder.
    """
    if amount <= 0:
        raise ValidationError("Advance amount must be greater than zero", field="amount")
    if round_to_cents(amount) != amount:
        raise ValidationError("Advance amount must be in whole cents", field="amount")
    if weeks_to_repay < 1:
        raise ValidationError("Weeks to repay must be at least 1", field="weeks_to_repay")

    weekly = ceil_to_cents(amount / weeks_to_repay)
    if amount - weekly * (weeks_to_repay - 1) <= 0:
        weekly = floor_to_cents(amount / weeks_to_repay)
    last_amount = amount - weekly * (weeks_to_repay - 1)
    if weekly <= 0 or last_amount <= 0:
        raise ValidationError(
            f"Advance of {amount} cannot be spread over {weeks_to_repay} weeks",
            field="weeks_to_repay",
        )

    first_week = next_week_start(advance_date)
    installments = []
    for sequence in range(1, weeks_to_repay + 1):
        installments.append(
            RepaymentInstallment(
                sequence=sequence,
                week_start_date=first_week + timedelta(weeks=sequence - 1),
                amount=last_amount if sequence == weeks_to_repay else weekly,
            )
        )

    return RepaymentSchedule(
        advance_amount=amount,
        weeks_to_repay=weeks_to_repay,
        weekly_repayment=weekly,
        installments=tuple(installments),
    )


def summarize_advances(lines: Iterable[AdvanceLedgerLine]) -> list[AdvanceSummary]:
    """Group ledger lines by their advance and compute balances.

    Lines without a parent are the advances themselves; every other line
    is grouped under its parent_entry_id. Children whose advance is not in
    the input are ignored.
    """
    advances: dict[UUID, AdvanceLedgerLine] = {}
    children: dict[UUID, list[AdvanceLedgerLine]] = defaultdict(list)
    for line in lines:
        if line.entry_type == AdvanceEntryType.ADVANCE:
            advances[line.entry_id] = line
        elif line.parent_entry_id is not None:
            children[line.parent_entry_id].append(line)

    summaries = []
    for advance_id, advance in advances.items():
        repaid = ZERO
        forgiven = ZERO
        adjusted = ZERO
        pending = 0
        for child in children.get(advance_id, []):
            if child.entry_type == AdvanceEntryType.REPAYMENT:
                if child.status == AdvanceStatus.COMPLETED:
                    repaid += abs(child.amount)
                elif child.status == AdvanceStatus.ACTIVE:
                    pending += 1
            elif child.entry_type == AdvanceEntryType.FORGIVENESS:
                forgiven += abs(child.amount)
            elif child.entry_type == AdvanceEntryType.ADJUSTMENT:
                adjusted += child.amount

        remaining = max(ZERO, advance.amount - repaid - forgiven + adjusted)
        summaries.append(
            AdvanceSummary(
                advance_id=advance_id,
                advance_amount=advance.amount,
                total_repaid=repaid,
                total_forgiven=forgiven,
                total_adjusted=adjusted,
                remaining_balance=remaining,
                pending_repayments=pending,
                status=advance.status,
            )
        )
    return summaries


def outstanding_balance(summaries: Iterable[AdvanceSummary]) -> Decimal:
    """Sum of remaining balances across active advances."""
    return sum(
        (s.remaining_balance for s in summaries if s.status == AdvanceStatus.ACTIVE),
        ZERO,
    )
