"""Ad-hoc payroll adjustments."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from driver_payroll.calculators.adjustments import (
    REVERSAL_TYPE,
    opposite_category,
    split_adjustments,
    to_variant,
)
from driver_payroll.calculators.periods import week_start_for
from driver_payroll.calculators.types import (
    AdjustmentCategory,
    AdjustmentStatus,
    AdjustmentTotals,
    AdjustmentVariant,
)
from driver_payroll.errors import ConflictError, NotFoundError, ValidationError
from driver_payroll.models import Adjustment, Employee
from driver_payroll.models.base import utcnow

logger = logging.getLogger(__name__)


def adjustment_variant(adjustment: Adjustment) -> AdjustmentVariant:
    return to_variant(
        adjustment.category,
        adjustment.adjustment_type,
        adjustment.amount,
        adjustment.adjustment_id,
    )


class AdjustmentSet:
    """Adjustments are never edited; a reversal books an opposite entry.

    A reversed original keeps counting in its own week and the reversal
    counts in its week, so the pair nets to zero.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        employee_id: UUID,
        category: str | AdjustmentCategory,
        amount: Decimal,
        effective_date: date,
        adjustment_type: str | None = None,
        description: str | None = None,
        week_start_date: date | None = None,
        load_number: str | None = None,
        reference_number: str | None = None,
        created_by: str | None = None,
        reverses_adjustment_id: UUID | None = None,
    ) -> Adjustment:
        try:
            category = AdjustmentCategory(category)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown adjustment category {category!r}", field="category"
            ) from exc
        if amount <= 0:
            raise ValidationError("Adjustment amount must be greater than zero", field="amount")
        if await self.session.get(Employee, employee_id) is None:
            raise NotFoundError("Employee", employee_id)

        adjustment = Adjustment(
            adjustment_id=uuid4(),
            employee_id=employee_id,
            category=category.value,
            adjustment_type=(adjustment_type or "OTHER").upper(),
            description=description,
            amount=amount,
            effective_date=effective_date,
            week_start_date=week_start_date or week_start_for(effective_date),
            load_number=load_number,
            reference_number=reference_number,
            status=AdjustmentStatus.ACTIVE.value,
            reverses_adjustment_id=reverses_adjustment_id,
            created_by=created_by,
        )
        self.session.add(adjustment)
        await self.session.flush()
        return adjustment

    async def get(self, adjustment_id: UUID) -> Adjustment:
        adjustment = await self.session.get(Adjustment, adjustment_id)
        if adjustment is None:
            raise NotFoundError("Adjustment", adjustment_id)
        return adjustment

    async def for_week(self, employee_id: UUID, week_start: date) -> list[Adjustment]:
        result = await self.session.execute(
            select(Adjustment)
            .where(Adjustment.employee_id == employee_id)
            .where(Adjustment.week_start_date == week_start)
            .order_by(Adjustment.effective_date, Adjustment.created_at)
        )
        return list(result.scalars().all())

    async def totals_for_week(self, employee_id: UUID, week_start: date) -> AdjustmentTotals:
        adjustments = await self.for_week(employee_id, week_start)
        return split_adjustments(adjustment_variant(a) for a in adjustments)

    async def approve(self, adjustment_id: UUID, approved_by: str | None = None) -> Adjustment:
        adjustment = await self.get(adjustment_id)
        if adjustment.status != AdjustmentStatus.ACTIVE.value:
            raise ValidationError(f"Adjustment is {adjustment.status} and cannot be approved")
        adjustment.status = AdjustmentStatus.APPROVED.value
        adjustment.approved_by = approved_by
        adjustment.approved_at = utcnow()
        await self.session.flush()
        return adjustment

    async def reverse(
        self,
        adjustment_id: UUID,
        effective_date: date | None = None,
        reason: str | None = None,
        created_by: str | None = None,
    ) -> Adjustment:
        """Book the opposite-category entry and mark the original REVERSED.

        The reversal lands in the original's week unless effective_date
        moves it, e.g. when that week is already processed.
        """
        original = await self.get(adjustment_id)
        if original.reverses_adjustment_id is not None:
            raise ValidationError("A reversal cannot itself be reversed")
        if original.status == AdjustmentStatus.REVERSED.value:
            raise ConflictError(f"Adjustment {adjustment_id} is already reversed")

        effective = effective_date or original.effective_date
        reversal = await self.create(
            employee_id=original.employee_id,
            category=opposite_category(original.category),
            amount=original.amount,
            effective_date=effective,
            adjustment_type=REVERSAL_TYPE,
            description=reason or f"Reversal of {original.category} {original.adjustment_type}",
            week_start_date=original.week_start_date if effective_date is None else None,
            load_number=original.load_number,
            reference_number=original.reference_number,
            created_by=created_by,
            reverses_adjustment_id=original.adjustment_id,
        )
        original.status = AdjustmentStatus.REVERSED.value
        await self.session.flush()
        logger.info("Adjustment %s reversed by %s", original.adjustment_id, reversal.adjustment_id)
        return reversal
