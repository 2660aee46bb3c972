"""Recurring weekly fees (ELD, IFTA, parking, ...)."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from driver_payroll.calculators.periods import next_occurrence, week_start_for
from driver_payroll.calculators.types import ZERO, RecurringFrequency, RecurringType
from driver_payroll.config import Settings, get_settings
from driver_payroll.errors import ConflictError, NotFoundError, ValidationError
from driver_payroll.models import Employee, RecurringDeduction

logger = logging.getLogger(__name__)


class RecurringDeductionSet:
    """At most one active entry per (driver, type, week)."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()

    async def add(
        self,
        driver_id: UUID,
        week_start: date,
        recurring_type: str | RecurringType,
        amount: Decimal,
        description: str | None = None,
        frequency: str | RecurringFrequency = RecurringFrequency.WEEKLY,
        end_date: date | None = None,
    ) -> RecurringDeduction:
        try:
            recurring_type = RecurringType(recurring_type)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown recurring deduction type {recurring_type!r}", field="recurring_type"
            ) from exc
        try:
            frequency = RecurringFrequency(frequency)
        except ValueError as exc:
            raise ValidationError(f"Unknown frequency {frequency!r}", field="frequency") from exc

        limit = self.settings.recurring_max_amount
        if amount <= 0 or amount > limit:
            raise ValidationError(
                f"Recurring deduction must be greater than 0 and at most {limit}", field="amount"
            )
        if await self.session.get(Employee, driver_id) is None:
            raise NotFoundError("Employee", driver_id)

        week_start = week_start_for(week_start)
        if end_date is not None and end_date < week_start:
            raise ValidationError("End date is before the deduction week", field="end_date")

        existing = await self._active_entry(driver_id, recurring_type.value, week_start)
        if existing is not None:
            raise ConflictError(
                f"An active {recurring_type.value} deduction already exists for week {week_start}"
            )

        entry = RecurringDeduction(
            driver_id=driver_id,
            week_start=week_start,
            recurring_type=recurring_type.value,
            amount=amount,
            description=description,
            frequency=frequency.value,
            is_active=True,
            next_deduction_date=next_occurrence(week_start, frequency.value),
            end_date=end_date,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def due_for_week(self, driver_id: UUID, week_start: date) -> list[RecurringDeduction]:
        result = await self.session.execute(
            select(RecurringDeduction)
            .where(RecurringDeduction.driver_id == driver_id)
            .where(RecurringDeduction.week_start == week_start)
            .where(RecurringDeduction.is_active.is_(True))
            .order_by(RecurringDeduction.recurring_type)
        )
        return list(result.scalars().all())

    async def total_for_week(self, driver_id: UUID, week_start: date) -> Decimal:
        entries = await self.due_for_week(driver_id, week_start)
        return sum((e.amount for e in entries), ZERO)

    async def deactivate(self, deduction_id: UUID) -> RecurringDeduction:
        entry = await self._get(deduction_id)
        entry.is_active = False
        await self.session.flush()
        return entry

    async def schedule_next(self, deduction_id: UUID) -> RecurringDeduction | None:
        """Create the next occurrence; None once past the end date."""
        entry = await self._get(deduction_id)
        if not entry.is_active:
            raise ValidationError("Cannot schedule from an inactive deduction")
        next_date = entry.next_deduction_date or next_occurrence(entry.week_start, entry.frequency)
        if entry.end_date is not None and next_date > entry.end_date:
            return None

        week_start = week_start_for(next_date)
        existing = await self._active_entry(entry.driver_id, entry.recurring_type, week_start)
        if existing is not None:
            return existing

        follow_up = RecurringDeduction(
            driver_id=entry.driver_id,
            week_start=week_start,
            recurring_type=entry.recurring_type,
            amount=entry.amount,
            description=entry.description,
            frequency=entry.frequency,
            is_active=True,
            next_deduction_date=next_occurrence(next_date, entry.frequency),
            end_date=entry.end_date,
        )
        self.session.add(follow_up)
        await self.session.flush()
        logger.info(
            "Scheduled %s deduction for driver %s week %s",
            entry.recurring_type,
            entry.driver_id,
            week_start,
        )
        return follow_up

    async def _active_entry(
        self, driver_id: UUID, recurring_type: str, week_start: date
    ) -> RecurringDeduction | None:
        result = await self.session.execute(
            select(RecurringDeduction)
            .where(RecurringDeduction.driver_id == driver_id)
            .where(RecurringDeduction.recurring_type == recurring_type)
            .where(RecurringDeduction.week_start == week_start)
            .where(RecurringDeduction.is_active.is_(True))
        )
        return result.scalars().first()

    async def _get(self, deduction_id: UUID) -> RecurringDeduction:
        entry = await self.session.get(RecurringDeduction, deduction_id)
        if entry is None:
            raise NotFoundError("Recurring deduction", deduction_id)
        return entry
