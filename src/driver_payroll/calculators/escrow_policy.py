"""Escrow deposit policy and transaction arithmetic."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from driver_payroll.calculators.money import ceil_whole
from driver_payroll.calculators.types import (
    ZERO,
    DepositPolicy,
    EscrowParameters,
    EscrowSuggestion,
    EscrowTransactionType,
)
from driver_payroll.errors import ValidationError

if TYPE_CHECKING:
    from driver_payroll.models import EscrowAccount


def suggest_deposit(
    params: EscrowParameters, potential_net_before_escrow: Decimal
) -> EscrowSuggestion:
    """Compute the non-binding weekly deposit suggestion.

    remaining = target - current
    weekly_target = ceil(remaining / target_weeks)
    affordable = max(0, potential_net - min_net_pay)
    suggested = min(weekly_target, max_weekly_deposit, affordable)

    The suggestion is surfaced only when it reaches min_weekly_deposit.
    It is never applied to net pay.
    """
    remaining = max(ZERO, params.target_amount - params.current_balance)
    weeks = max(1, params.target_weeks)
    weekly_target = ceil_whole(remaining / weeks)
    affordable = max(ZERO, potential_net_before_escrow - params.min_net_pay)
    suggested = min(weekly_target, params.max_weekly_deposit, affordable)
    surfaced = suggested > 0 and suggested >= params.min_weekly_deposit
    return EscrowSuggestion(
        remaining=remaining,
        weekly_target=weekly_target,
        affordable=affordable,
        suggested=suggested,
        surfaced=surfaced,
    )


def resolve_deposit_policy(account: EscrowAccount | None) -> DepositPolicy:
    """Decide how this account's weekly deposit is determined."""
    if account is None or not account.is_active:
        return DepositPolicy.none()
    if account.current_balance >= account.target_amount:
        return DepositPolicy.none()
    if account.weekly_amount is not None and account.weekly_amount > 0:
        return DepositPolicy.manual(account.weekly_amount)
    if account.suggest_deposits:
        return DepositPolicy.auto_suggested()
    return DepositPolicy.none()


def signed_amount(transaction_type: EscrowTransactionType, amount: Decimal) -> Decimal:
    """Validate an escrow amount and return its signed balance effect."""
    if transaction_type in (EscrowTransactionType.DEPOSIT, EscrowTransactionType.INTEREST):
        if amount <= 0:
            raise ValidationError(
                f"{transaction_type.value} amount must be greater than zero", field="amount"
            )
        return amount
    if transaction_type == EscrowTransactionType.WITHDRAWAL:
        if amount <= 0:
            raise ValidationError("WITHDRAWAL amount must be greater than zero", field="amount")
        return -amount
    if transaction_type == EscrowTransactionType.ADJUSTMENT:
        if amount == 0:
            raise ValidationError("ADJUSTMENT amount cannot be zero", field="amount")
        return amount
    raise ValidationError(f"Unknown escrow transaction type {transaction_type!r}")


def apply_transaction(
    balance: Decimal, transaction_type: EscrowTransactionType, amount: Decimal
) -> tuple[Decimal, Decimal]:
    """Return (signed_amount, balance_after); reject a negative result."""
    signed = signed_amount(transaction_type, amount)
    balance_after = balance + signed
    if balance_after < 0:
        if transaction_type == EscrowTransactionType.WITHDRAWAL:
            message = f"Insufficient escrow balance: {balance} available, {amount} requested"
        else:
            message = f"Adjustment would drive escrow balance negative ({balance_after})"
        raise ValidationError(message, field="amount")
    return signed, balance_after
