"""Escrow ledger: accounts, balance-snapshotted transactions and deposit policy."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from driver_payroll.calculators.escrow_policy import (
    apply_transaction,
    resolve_deposit_policy,
    suggest_deposit,
)
from driver_payroll.calculators.types import (
    ZERO,
    DepositPolicy,
    DepositPolicyKind,
    EscrowParameters,
    EscrowSuggestion,
    EscrowTransactionType,
)
from driver_payroll.config import Settings, get_settings
from driver_payroll.errors import ConflictError, NotFoundError, ValidationError
from driver_payroll.models import Employee, EscrowAccount, EscrowTransaction
from driver_payroll.models.base import utcnow

logger = logging.getLogger(__name__)


@dataclass
class EscrowPosting:
    transaction: EscrowTransaction
    new_balance: Decimal


@dataclass
class EscrowDecision:
    """Escrow deposit to deduct for one payroll week."""

    policy: DepositPolicy
    amount: Decimal = ZERO
    posted: bool = False
    suggestion: EscrowSuggestion | None = None

    @property
    def surfaced_suggestion(self) -> Decimal | None:
        if self.suggestion is not None and self.suggestion.surfaced:
            return self.suggestion.suggested
        return None


class EscrowLedger:
    """Escrow accounts and transactions for one session.

    Every posting locks the account row, validates the new balance, and
    writes the transaction and the balance together.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()

    async def open_account(
        self,
        employee_id: UUID,
        target_amount: Decimal | None = None,
        weekly_amount: Decimal | None = None,
        target_weeks: int | None = None,
        max_weekly_deposit: Decimal | None = None,
        min_weekly_deposit: Decimal | None = None,
        suggest_deposits: bool = True,
    ) -> EscrowAccount:
        if await self.session.get(Employee, employee_id) is None:
            raise NotFoundError("Employee", employee_id)
        if await self.get_account(employee_id) is not None:
            raise ConflictError(f"Employee {employee_id} already has an escrow account")

        target = target_amount if target_amount is not None else self.settings.escrow_default_target
        if target <= 0:
            raise ValidationError("Escrow target must be greater than zero", field="target_amount")
        if weekly_amount is not None and weekly_amount < 0:
            raise ValidationError("Weekly amount cannot be negative", field="weekly_amount")

        account = EscrowAccount(
            account_id=uuid4(),
            employee_id=employee_id,
            current_balance=ZERO,
            target_amount=target,
            weekly_amount=weekly_amount,
            target_weeks=target_weeks or self.settings.escrow_target_weeks,
            max_weekly_deposit=max_weekly_deposit or self.settings.escrow_max_weekly_deposit,
            min_weekly_deposit=min_weekly_deposit or self.settings.escrow_min_weekly_deposit,
            suggest_deposits=suggest_deposits,
            is_active=True,
            is_funded=False,
        )
        self.session.add(account)
        await self.session.flush()
        return account

    async def get_account(
        self, employee_id: UUID, for_update: bool = False
    ) -> EscrowAccount | None:
        stmt = select(EscrowAccount).where(EscrowAccount.employee_id == employee_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def require_account(self, employee_id: UUID, for_update: bool = False) -> EscrowAccount:
        account = await self.get_account(employee_id, for_update=for_update)
        if account is None:
            raise NotFoundError("Escrow account for employee", employee_id)
        return account

    async def set_weekly_amount(
        self, employee_id: UUID, weekly_amount: Decimal | None
    ) -> EscrowAccount:
        """Set or clear the manual weekly override."""
        if weekly_amount is not None and weekly_amount < 0:
            raise ValidationError("Weekly amount cannot be negative", field="weekly_amount")
        account = await self.require_account(employee_id, for_update=True)
        account.weekly_amount = weekly_amount
        await self.session.flush()
        return account

    async def set_active(self, employee_id: UUID, is_active: bool) -> EscrowAccount:
        account = await self.require_account(employee_id, for_update=True)
        account.is_active = is_active
        await self.session.flush()
        return account

    async def delete_account(self, employee_id: UUID) -> None:
        account = await self.require_account(employee_id, for_update=True)
        count = await self.session.scalar(
            select(func.count())
            .select_from(EscrowTransaction)
            .where(EscrowTransaction.account_id == account.account_id)
        )
        if count:
            raise ConflictError("Escrow account has transactions and cannot be deleted")
        await self.session.delete(account)
        await self.session.flush()

    async def post_transaction(
        self,
        employee_id: UUID,
        transaction_type: str | EscrowTransactionType,
        amount: Decimal,
        week_start_date: date | None = None,
        transaction_date: date | None = None,
        description: str | None = None,
        paystub_id: UUID | None = None,
        reverses_transaction_id: UUID | None = None,
        created_by: str | None = None,
    ) -> EscrowPosting:
        """Post a transaction and move the balance in the same unit of work.

        Raises ValidationError for a non-positive deposit, withdrawal or
        interest amount, a zero adjustment, or a resulting negative balance.
        Nothing is written when validation fails.
        """
        try:
            transaction_type = EscrowTransactionType(transaction_type)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown escrow transaction type {transaction_type!r}", field="transaction_type"
            ) from exc

        account = await self.require_account(employee_id, for_update=True)
        if not account.is_active and transaction_type == EscrowTransactionType.DEPOSIT:
            raise ValidationError("Escrow account is inactive")

        balance_before = account.current_balance
        signed, balance_after = apply_transaction(balance_before, transaction_type, amount)

        last_sequence = await self.session.scalar(
            select(func.max(EscrowTransaction.sequence)).where(
                EscrowTransaction.account_id == account.account_id
            )
        )
        transaction_date = transaction_date or date.today()
        transaction = EscrowTransaction(
            transaction_id=uuid4(),
            account_id=account.account_id,
            employee_id=employee_id,
            sequence=(last_sequence or 0) + 1,
            transaction_type=transaction_type.value,
            amount=signed,
            balance_before=balance_before,
            balance_after=balance_after,
            transaction_date=transaction_date,
            week_start_date=week_start_date,
            description=description,
            paystub_id=paystub_id,
            reverses_transaction_id=reverses_transaction_id,
            created_by=created_by,
        )
        self.session.add(transaction)

        account.current_balance = balance_after
        if transaction_type == EscrowTransactionType.DEPOSIT:
            account.last_deposit_date = transaction_date
        funded = balance_after >= account.target_amount
        if funded and account.fully_funded_at is None:
            account.fully_funded_at = utcnow()
        account.is_funded = funded
        await self.session.flush()

        logger.info(
            "Escrow %s of %s for employee %s, balance %s -> %s",
            transaction_type.value,
            signed,
            employee_id,
            balance_before,
            balance_after,
        )
        return EscrowPosting(transaction=transaction, new_balance=balance_after)

    async def reverse_transaction(
        self,
        transaction_id: UUID,
        reason: str | None = None,
        created_by: str | None = None,
    ) -> EscrowPosting:
        """Post an ADJUSTMENT that cancels a previous transaction."""
        original = await self.session.get(EscrowTransaction, transaction_id)
        if original is None:
            raise NotFoundError("Escrow transaction", transaction_id)
        if original.reverses_transaction_id is not None:
            raise ValidationError("A reversal cannot itself be reversed")
        already = await self.session.scalar(
            select(func.count())
            .select_from(EscrowTransaction)
            .where(EscrowTransaction.reverses_transaction_id == transaction_id)
        )
        if already:
            raise ConflictError(f"Escrow transaction {transaction_id} is already reversed")

        return await self.post_transaction(
            original.employee_id,
            EscrowTransactionType.ADJUSTMENT,
            -original.amount,
            week_start_date=original.week_start_date,
            description=reason or f"Reversal of {original.transaction_type}",
            reverses_transaction_id=transaction_id,
            created_by=created_by,
        )

    async def transactions(self, employee_id: UUID) -> list[EscrowTransaction]:
        result = await self.session.execute(
            select(EscrowTransaction)
            .where(EscrowTransaction.employee_id == employee_id)
            .order_by(EscrowTransaction.sequence)
        )
        return list(result.scalars().all())

    async def statistics(self, employee_id: UUID) -> dict[str, Any]:
        """Count and total per transaction type."""
        result = await self.session.execute(
            select(
                EscrowTransaction.transaction_type,
                func.count(),
                func.coalesce(func.sum(EscrowTransaction.amount), 0),
            )
            .where(EscrowTransaction.employee_id == employee_id)
            .group_by(EscrowTransaction.transaction_type)
        )
        by_type = {
            row[0]: {"count": row[1], "total": Decimal(str(row[2]))} for row in result.all()
        }
        for transaction_type in EscrowTransactionType:
            by_type.setdefault(transaction_type.value, {"count": 0, "total": ZERO})
        return by_type

    async def posted_deposits_for_week(
        self, employee_id: UUID, week_start: date
    ) -> list[EscrowTransaction]:
        """DEPOSIT transactions booked against the week, excluding reversed ones."""
        reversed_ids = (
            select(EscrowTransaction.reverses_transaction_id)
            .where(EscrowTransaction.employee_id == employee_id)
            .where(EscrowTransaction.reverses_transaction_id.is_not(None))
        )
        result = await self.session.execute(
            select(EscrowTransaction)
            .where(EscrowTransaction.employee_id == employee_id)
            .where(EscrowTransaction.transaction_type == EscrowTransactionType.DEPOSIT.value)
            .where(EscrowTransaction.week_start_date == week_start)
            .where(EscrowTransaction.transaction_id.not_in(reversed_ids))
            .order_by(EscrowTransaction.sequence)
        )
        return list(result.scalars().all())

    def suggestion_for(
        self, account: EscrowAccount, potential_net_before_escrow: Decimal
    ) -> EscrowSuggestion:
        params = EscrowParameters(
            target_amount=account.target_amount,
            current_balance=account.current_balance,
            target_weeks=account.target_weeks,
            max_weekly_deposit=account.max_weekly_deposit,
            min_weekly_deposit=account.min_weekly_deposit,
            min_net_pay=self.settings.escrow_min_net_pay,
        )
        return suggest_deposit(params, potential_net_before_escrow)

    async def deposit_for_week(
        self, employee_id: UUID, week_start: date, potential_net_before_escrow: Decimal
    ) -> EscrowDecision:
        """Escrow deduction for the week.

        Deposits already posted for the week win. Otherwise a MANUAL
        override is deducted (and posted when the payroll is processed).
        AUTO_SUGGESTED only records a suggestion; nothing is deducted.
        """
        account = await self.get_account(employee_id)
        posted = await self.posted_deposits_for_week(employee_id, week_start)
        if posted:
            return EscrowDecision(
                policy=resolve_deposit_policy(account),
                amount=sum((t.amount for t in posted), ZERO),
                posted=True,
            )

        policy = resolve_deposit_policy(account)
        if policy.kind == DepositPolicyKind.MANUAL:
            return EscrowDecision(policy=policy, amount=policy.amount)
        if policy.kind == DepositPolicyKind.AUTO_SUGGESTED:
            suggestion = self.suggestion_for(account, potential_net_before_escrow)
            if suggestion.surfaced:
                logger.info(
                    "Suggested escrow deposit %s for employee %s (not applied)",
                    suggestion.suggested,
                    employee_id,
                )
            return EscrowDecision(policy=policy, suggestion=suggestion)
        return EscrowDecision(policy=policy)
