"""Cash advance ledger: issuance, scheduled repayments, forgiveness."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from driver_payroll.calculators.advance_schedule import (
    build_repayment_schedule,
    outstanding_balance,
    summarize_advances,
)
from driver_payroll.calculators.periods import week_start_for
from driver_payroll.calculators.types import (
    AdvanceEntryType,
    AdvanceLedgerLine,
    AdvanceStatus,
    AdvanceSummary,
    EmployeeStatus,
    RepaymentSchedule,
)
from driver_payroll.config import Settings, get_settings
from driver_payroll.errors import NotFoundError, ValidationError
from driver_payroll.models import AdvanceEntry, Employee

logger = logging.getLogger(__name__)


@dataclass
class AdvanceCreation:
    """Result of issuing an advance."""

    advance: AdvanceEntry
    repayment_schedule: list[AdvanceEntry]
    schedule: RepaymentSchedule


def to_ledger_line(entry: AdvanceEntry) -> AdvanceLedgerLine:
    return AdvanceLedgerLine(
        entry_id=entry.entry_id,
        entry_type=AdvanceEntryType(entry.entry_type),
        amount=entry.amount,
        status=AdvanceStatus(entry.status),
        parent_entry_id=entry.parent_entry_id,
        week_start_date=entry.week_start_date,
    )


class AdvanceLedger:
    """Advance ledger for one session.

    The ADVANCE row carries the loan; its REPAYMENT rows are generated up
    front and marked COMPLETED as payrolls that include them are processed.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()

    async def create_advance(
        self,
        employee_id: UUID,
        amount: Decimal,
        weeks_to_repay: int,
        advance_date: date | None = None,
        description: str | None = None,
        created_by: str | None = None,
    ) -> AdvanceCreation:
        """Issue an advance and generate its repayment schedule.

        Raises ValidationError on amount or week bounds, an inactive
        employee, or when the employee's outstanding balance plus this
        advance would exceed the ceiling.
        """
        if amount <= 0 or amount > self.settings.advance_max_amount:
            raise ValidationError(
                f"Advance amount must be greater than 0 and at most "
                f"{self.settings.advance_max_amount}",
                field="amount",
            )
        if weeks_to_repay < 1 or weeks_to_repay > self.settings.advance_max_weeks:
            raise ValidationError(
                f"Weeks to repay must be between 1 and {self.settings.advance_max_weeks}",
                field="weeks_to_repay",
            )

        # Row lock serializes concurrent advances for the same employee
        result = await self.session.execute(
            select(Employee).where(Employee.employee_id == employee_id).with_for_update()
        )
        employee = result.scalar_one_or_none()
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        if employee.status != EmployeeStatus.ACTIVE.value:
            raise ValidationError(f"Employee {employee.name} is not active", field="employee_id")

        outstanding = await self.outstanding_balance(employee_id)
        ceiling = self.settings.advance_balance_ceiling
        if outstanding + amount > ceiling:
            raise ValidationError(
                f"Outstanding advances {outstanding} plus {amount} exceed the {ceiling} ceiling",
                field="amount",
            )

        advance_date = advance_date or date.today()
        schedule = build_repayment_schedule(amount, weeks_to_repay, advance_date)

        advance_id = uuid4()
        advance_key = f"ADV-{advance_date:%Y%m%d}-{advance_id.hex[:8].upper()}"
        advance = AdvanceEntry(
            entry_id=advance_id,
            employee_id=employee_id,
            entry_type=AdvanceEntryType.ADVANCE.value,
            advance_key=advance_key,
            amount=amount,
            weeks_to_repay=weeks_to_repay,
            weekly_repayment=schedule.weekly_repayment,
            first_repayment_date=schedule.first_repayment_date,
            last_repayment_date=schedule.last_repayment_date,
            week_start_date=week_start_for(advance_date),
            status=AdvanceStatus.ACTIVE.value,
            description=description,
            created_by=created_by,
        )
        repayments = [
            AdvanceEntry(
                entry_id=uuid4(),
                employee_id=employee_id,
                entry_type=AdvanceEntryType.REPAYMENT.value,
                advance_key=advance_key,
                parent_entry_id=advance_id,
                sequence=installment.sequence,
                amount=-installment.amount,
                week_start_date=installment.week_start_date,
                status=AdvanceStatus.ACTIVE.value,
                description=f"Repayment {installment.sequence} of {weeks_to_repay}",
                created_by=created_by,
            )
            for installment in schedule.installments
        ]
        self.session.add(advance)
        self.session.add_all(repayments)
        await self.session.flush()

        logger.info(
            "Advance %s of %s issued to employee %s over %d weeks",
            advance_key,
            amount,
            employee_id,
            weeks_to_repay,
        )
        return AdvanceCreation(advance=advance, repayment_schedule=repayments, schedule=schedule)

    async def entries_for_employee(self, employee_id: UUID) -> list[AdvanceEntry]:
        result = await self.session.execute(
            select(AdvanceEntry)
            .where(AdvanceEntry.employee_id == employee_id)
            .order_by(AdvanceEntry.week_start_date, AdvanceEntry.sequence)
        )
        return list(result.scalars().all())

    async def summarize(self, employee_id: UUID) -> list[AdvanceSummary]:
        entries = await self.entries_for_employee(employee_id)
        return summarize_advances(to_ledger_line(e) for e in entries)

    async def outstanding_balance(self, employee_id: UUID) -> Decimal:
        return outstanding_balance(await self.summarize(employee_id))

    async def due_repayments(self, employee_id: UUID, week_start: date) -> list[AdvanceEntry]:
        """Repayments scheduled for the week starting week_start.

        Already-applied (COMPLETED) rows are included so that recalculating
        a reopened week reproduces the same deduction.
        """
        result = await self.session.execute(
            select(AdvanceEntry)
            .where(AdvanceEntry.employee_id == employee_id)
            .where(AdvanceEntry.entry_type == AdvanceEntryType.REPAYMENT.value)
            .where(AdvanceEntry.week_start_date == week_start)
            .where(
                AdvanceEntry.status.in_(
                    [AdvanceStatus.ACTIVE.value, AdvanceStatus.COMPLETED.value]
                )
            )
            .order_by(AdvanceEntry.advance_key, AdvanceEntry.sequence)
        )
        return list(result.scalars().all())

    async def apply_repayments(
        self, entries: Iterable[AdvanceEntry], payroll_id: UUID
    ) -> list[AdvanceEntry]:
        """Mark pending repayments COMPLETED; close advances that reach zero."""
        applied = []
        parent_ids = set()
        for entry in entries:
            if entry.status != AdvanceStatus.ACTIVE.value:
                continue
            entry.status = AdvanceStatus.COMPLETED.value
            entry.applied_payroll_id = payroll_id
            applied.append(entry)
            parent_ids.add(entry.parent_entry_id)
        await self.session.flush()

        for parent_id in parent_ids:
            advance = await self._get_advance(parent_id)
            summary = await self._summary_for(advance)
            if summary.remaining_balance == 0 and advance.status == AdvanceStatus.ACTIVE.value:
                advance.status = AdvanceStatus.COMPLETED.value
                logger.info("Advance %s fully repaid", advance.advance_key)
        await self.session.flush()
        return applied

    async def forgive_advance(
        self,
        advance_id: UUID,
        reason: str | None = None,
        created_by: str | None = None,
    ) -> AdvanceEntry:
        """Forgive the remaining balance and cancel pending repayments."""
        advance = await self._get_advance(advance_id)
        if advance.status != AdvanceStatus.ACTIVE.value:
            raise ValidationError(f"Advance {advance.advance_key} is {advance.status}")
        summary = await self._summary_for(advance)
        if summary.remaining_balance <= 0:
            raise ValidationError(f"Advance {advance.advance_key} has no balance to forgive")

        forgiveness = AdvanceEntry(
            entry_id=uuid4(),
            employee_id=advance.employee_id,
            entry_type=AdvanceEntryType.FORGIVENESS.value,
            advance_key=advance.advance_key,
            parent_entry_id=advance.entry_id,
            amount=-summary.remaining_balance,
            week_start_date=week_start_for(date.today()),
            status=AdvanceStatus.COMPLETED.value,
            description=reason or "Balance forgiven",
            created_by=created_by,
        )
        self.session.add(forgiveness)
        await self._cancel_pending(advance.entry_id)
        advance.status = AdvanceStatus.FORGIVEN.value
        await self.session.flush()
        logger.info(
            "Advance %s forgiven (%s remaining)", advance.advance_key, summary.remaining_balance
        )
        return forgiveness

    async def cancel_advance(self, advance_id: UUID) -> AdvanceEntry:
        """Cancel an advance that has not had any repayment applied."""
        advance = await self._get_advance(advance_id)
        if advance.status != AdvanceStatus.ACTIVE.value:
            raise ValidationError(f"Advance {advance.advance_key} is {advance.status}")
        summary = await self._summary_for(advance)
        if summary.total_repaid > 0:
            raise ValidationError(
                f"Advance {advance.advance_key} has applied repayments and cannot be cancelled"
            )
        await self._cancel_pending(advance.entry_id)
        advance.status = AdvanceStatus.CANCELLED.value
        await self.session.flush()
        return advance

    async def _cancel_pending(self, advance_id: UUID) -> None:
        result = await self.session.execute(
            select(AdvanceEntry)
            .where(AdvanceEntry.parent_entry_id == advance_id)
            .where(AdvanceEntry.entry_type == AdvanceEntryType.REPAYMENT.value)
            .where(AdvanceEntry.status == AdvanceStatus.ACTIVE.value)
        )
        for entry in result.scalars().all():
            entry.status = AdvanceStatus.CANCELLED.value

    async def _get_advance(self, advance_id: UUID) -> AdvanceEntry:
        advance = await self.session.get(AdvanceEntry, advance_id)
        if advance is None or advance.entry_type != AdvanceEntryType.ADVANCE.value:
            raise NotFoundError("Advance", advance_id)
        return advance

    async def _summary_for(self, advance: AdvanceEntry) -> AdvanceSummary:
        result = await self.session.execute(
            select(AdvanceEntry).where(AdvanceEntry.parent_entry_id == advance.entry_id)
        )
        lines = [to_ledger_line(advance)]
        lines.extend(to_ledger_line(e) for e in result.scalars().all())
        return summarize_advances(lines)[0]
