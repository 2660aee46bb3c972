"""Payroll record lifecycle: compute, review, process, pay, unlock, delete."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from driver_payroll.calculators.mileage import MileageResolver
from driver_payroll.calculators.money import round_to_cents
from driver_payroll.calculators.periods import pay_date_for, week_end_for, week_start_for
from driver_payroll.calculators.types import ZERO, DepositPolicyKind, EscrowTransactionType
from driver_payroll.config import Settings, get_settings
from driver_payroll.database import employee_period_lock
from driver_payroll.errors import (
    AlreadyLockedError,
    ConflictError,
    InvalidTransitionError,
    NotCalculatedError,
    NotFoundError,
    RecordLockedError,
    ValidationError,
)
from driver_payroll.models import (
    PAYROLL_MONEY_FIELDS,
    Employee,
    IndividualPayroll,
    Load,
    PayrollAdjustmentLink,
    PayrollLoad,
    Paystub,
)
from driver_payroll.models.base import utcnow
from driver_payroll.services.advance_ledger import AdvanceLedger
from driver_payroll.services.aggregator import PeriodAggregator, PeriodCalculation
from driver_payroll.services.escrow_ledger import EscrowDecision, EscrowLedger
from driver_payroll.services.state_machine import PayrollStateMachine, PayrollStatus

logger = logging.getLogger(__name__)


@dataclass
class LoadMove:
    """Outcome of moving a load to another payroll week."""

    load: Load
    from_week: date | None
    to_week: date
    recalculated: list[IndividualPayroll] = field(default_factory=list)


class PayrollRecordService:
    """Owns IndividualPayroll rows and their transitions.

    A record is unique per (employee, week). It may be recalculated only
    while unlocked; PROCESSED and PAID records are locked until an explicit
    unlock. All writes for one operation go out in a single flush so the
    caller's transaction commits them together or not at all.
    """

    def __init__(
        self,
        session: AsyncSession,
        mileage_resolver: MileageResolver | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.aggregator = PeriodAggregator(session, mileage_resolver, self.settings)
        self.advances = AdvanceLedger(session, self.settings)
        self.escrow = EscrowLedger(session, self.settings)

    # === Queries ===

    async def get_payroll(self, payroll_id: UUID, for_update: bool = False) -> IndividualPayroll:
        stmt = select(IndividualPayroll).where(IndividualPayroll.payroll_id == payroll_id)
        if for_update:
            stmt = stmt.with_for_update()
        record = (await self.session.execute(stmt)).scalar_one_or_none()
        if record is None:
            raise NotFoundError("Payroll record", payroll_id)
        return record

    async def find_payroll(
        self, employee_id: UUID, week_start: date
    ) -> IndividualPayroll | None:
        result = await self.session.execute(
            select(IndividualPayroll)
            .where(IndividualPayroll.employee_id == employee_id)
            .where(IndividualPayroll.week_start_date == week_start)
        )
        return result.scalar_one_or_none()

    async def list_for_week(self, week_start: date) -> list[IndividualPayroll]:
        result = await self.session.execute(
            select(IndividualPayroll)
            .where(IndividualPayroll.week_start_date == week_start)
            .order_by(IndividualPayroll.employee_id)
        )
        return list(result.scalars().all())

    async def get_paystub(self, payroll_id: UUID) -> Paystub | None:
        result = await self.session.execute(
            select(Paystub).where(Paystub.payroll_id == payroll_id)
        )
        return result.scalar_one_or_none()

    async def loads_for(self, payroll_id: UUID) -> list[PayrollLoad]:
        result = await self.session.execute(
            select(PayrollLoad)
            .where(PayrollLoad.payroll_id == payroll_id)
            .order_by(PayrollLoad.load_number)
        )
        return list(result.scalars().all())

    async def adjustment_links_for(self, payroll_id: UUID) -> list[PayrollAdjustmentLink]:
        result = await self.session.execute(
            select(PayrollAdjustmentLink).where(PayrollAdjustmentLink.payroll_id == payroll_id)
        )
        return list(result.scalars().all())

    # === Creation and calculation ===

    async def create_draft(
        self, employee_id: UUID, week_start: date, week_end: date | None = None
    ) -> IndividualPayroll:
        """Create an empty DRAFT record; a duplicate is a ConflictError."""
        week_end = week_end or week_end_for(week_start)
        if week_end < week_start:
            raise ValidationError("Period end is before period start", field="week_end")
        if await self.session.get(Employee, employee_id) is None:
            raise NotFoundError("Employee", employee_id)
        if await self.find_payroll(employee_id, week_start) is not None:
            raise ConflictError(
                f"Payroll for employee {employee_id} week {week_start} already exists"
            )
        record = IndividualPayroll(
            payroll_id=uuid4(),
            employee_id=employee_id,
            week_start_date=week_start,
            week_end_date=week_end,
            pay_date=pay_date_for(week_end),
            status=PayrollStatus.DRAFT.value,
            is_locked=False,
        )
        for name in PAYROLL_MONEY_FIELDS:
            setattr(record, name, ZERO)
        self.session.add(record)
        await self._flush()
        return record

    async def compute_period_payroll(
        self,
        employee_id: UUID,
        week_start: date,
        week_end: date | None = None,
        recalculate: bool = False,
    ) -> IndividualPayroll:
        """Create (or, with recalculate=True, refresh) the record for a week.

        Raises ConflictError for an existing record without recalculate or
        when another worker holds the (employee, week) lock, and
        RecordLockedError when the existing record is locked. Recalculating
        with unchanged inputs leaves the record untouched.
        """
        async with employee_period_lock(self.session, employee_id, week_start):
            record = await self.find_payroll(employee_id, week_start)
            if record is not None:
                if record.is_locked:
                    raise RecordLockedError(record.payroll_id)
                if not recalculate:
                    raise ConflictError(
                        f"Payroll for employee {employee_id} week {week_start} already exists"
                    )
            else:
                record = await self.create_draft(employee_id, week_start, week_end)
            return await self._calculate_record(record, week_end)

    async def calculate(self, payroll_id: UUID) -> IndividualPayroll:
        """(Re)run the aggregation for an existing unlocked record."""
        record = await self.get_payroll(payroll_id, for_update=True)
        async with employee_period_lock(self.session, record.employee_id, record.week_start_date):
            return await self._calculate_record(record, record.week_end_date)

    async def _calculate_record(
        self, record: IndividualPayroll, week_end: date | None
    ) -> IndividualPayroll:
        if record.is_locked:
            raise RecordLockedError(record.payroll_id)
        if not PayrollStateMachine.can_calculate(record.status):
            raise InvalidTransitionError(record.status, PayrollStatus.CALCULATED.value)

        calculation = await self.aggregator.calculate(
            record.employee_id, record.week_start_date, week_end or record.week_end_date
        )

        if (
            record.status != PayrollStatus.DRAFT.value
            and record.inputs_fingerprint == calculation.inputs_fingerprint
        ):
            logger.debug("Payroll %s unchanged, skipping recalculation", record.payroll_id)
            return record

        PayrollStateMachine.validate_transition(record.status, PayrollStatus.CALCULATED.value)
        calculation.apply_to(record, self.settings.engine_version)
        record.status = PayrollStatus.CALCULATED.value
        record.calculated_at = utcnow()
        await self._replace_links(record, calculation)
        await self._flush()

        logger.info(
            "Payroll %s calculated for employee %s week %s: net %s",
            record.payroll_id,
            record.employee_id,
            record.week_start_date,
            record.net_pay,
        )
        return record

    async def _replace_links(
        self, record: IndividualPayroll, calculation: PeriodCalculation
    ) -> None:
        await self.session.execute(
            delete(PayrollLoad).where(PayrollLoad.payroll_id == record.payroll_id)
        )
        await self.session.execute(
            delete(PayrollAdjustmentLink).where(
                PayrollAdjustmentLink.payroll_id == record.payroll_id
            )
        )
        for earning in calculation.earnings.per_load:
            self.session.add(
                PayrollLoad(
                    payroll_id=record.payroll_id,
                    load_id=earning.load_id,
                    load_number=earning.load_number,
                    gross_amount=earning.gross_amount,
                    miles=earning.miles,
                    mileage_method=earning.mileage_method.value,
                    service_fee=round_to_cents(earning.service_fee),
                    driver_share=round_to_cents(earning.driver_share),
                    company_share=round_to_cents(earning.company_share),
                )
            )
        for adjustment in calculation.adjustments:
            self.session.add(
                PayrollAdjustmentLink(
                    payroll_id=record.payroll_id,
                    adjustment_id=adjustment.adjustment_id,
                )
            )

    # === Transitions ===

    async def review(self, payroll_id: UUID, reviewed_by: str | None = None) -> IndividualPayroll:
        record = await self.get_payroll(payroll_id, for_update=True)
        if record.is_locked:
            raise RecordLockedError(payroll_id)
        PayrollStateMachine.validate_transition(record.status, PayrollStatus.REVIEWED.value)
        record.status = PayrollStatus.REVIEWED.value
        record.reviewed_at = utcnow()
        record.reviewed_by = reviewed_by
        await self._flush()
        return record

    async def process_payroll(self, payroll_id: UUID, processed_by: str | None = None) -> Paystub:
        """Finalize a record: apply ledgers, snapshot a paystub, lock.

        Raises AlreadyLockedError for a locked record and NotCalculatedError
        unless the record is CALCULATED or REVIEWED. The ledgers are read
        again under the period lock; if anything the record was calculated
        from has changed, ConflictError asks for a recalculation and nothing
        is written.
        """
        record = await self.get_payroll(payroll_id, for_update=True)
        if record.is_locked:
            raise AlreadyLockedError(payroll_id)
        if not PayrollStateMachine.can_process(record.status):
            raise NotCalculatedError(record.status)

        employee = await self.session.get(Employee, record.employee_id)
        if employee is None:
            raise NotFoundError("Employee", record.employee_id)

        async with employee_period_lock(self.session, record.employee_id, record.week_start_date):
            current = await self.aggregator.calculate(
                record.employee_id, record.week_start_date, record.week_end_date
            )
            if current.inputs_fingerprint != record.inputs_fingerprint:
                raise ConflictError(
                    f"Payroll {payroll_id} inputs changed since it was calculated; "
                    "recalculate before processing"
                )

            paystub = await self._write_paystub(record, employee)
            await self.advances.apply_repayments(current.repayments, record.payroll_id)
            await self._post_manual_escrow(record, current.escrow, paystub)

            PayrollStateMachine.validate_transition(record.status, PayrollStatus.PROCESSED.value)
            record.status = PayrollStatus.PROCESSED.value
            record.is_locked = True
            record.processed_at = utcnow()
            record.processed_by = processed_by
            await self._flush()

        logger.info("Payroll %s processed, paystub %s", payroll_id, paystub.paystub_id)
        return paystub

    async def _post_manual_escrow(
        self, record: IndividualPayroll, decision: EscrowDecision, paystub: Paystub
    ) -> None:
        """Post the MANUAL override deposit that the record deducts."""
        if decision.posted or decision.policy.kind != DepositPolicyKind.MANUAL:
            return
        if record.escrow_deposits <= 0:
            return
        await self.escrow.post_transaction(
            record.employee_id,
            EscrowTransactionType.DEPOSIT,
            record.escrow_deposits,
            week_start_date=record.week_start_date,
            transaction_date=record.pay_date,
            description=f"Weekly escrow deposit, week of {record.week_start_date}",
            paystub_id=paystub.paystub_id,
        )

    async def mark_paid(self, payroll_id: UUID) -> IndividualPayroll:
        record = await self.get_payroll(payroll_id, for_update=True)
        PayrollStateMachine.validate_transition(record.status, PayrollStatus.PAID.value)
        record.status = PayrollStatus.PAID.value
        record.is_locked = True
        record.paid_at = utcnow()
        paystub = await self.get_paystub(payroll_id)
        if paystub is not None:
            paystub.status = PayrollStatus.PAID.value
        await self._flush()
        return record

    async def unlock(self, payroll_id: UUID, reason: str | None = None) -> IndividualPayroll:
        """Reopen a PROCESSED record for review. PAID records stay locked."""
        record = await self.get_payroll(payroll_id, for_update=True)
        if not PayrollStateMachine.is_unlock(record.status, PayrollStatus.REVIEWED.value):
            raise InvalidTransitionError(
                record.status,
                PayrollStatus.REVIEWED.value,
                "only PROCESSED records can be unlocked",
            )
        record.status = PayrollStatus.REVIEWED.value
        record.is_locked = False
        if reason:
            record.notes = f"{record.notes}\n{reason}" if record.notes else reason
        await self._flush()
        logger.info("Payroll %s unlocked", payroll_id)
        return record

    async def set_week_lock(self, week_start: date, locked: bool) -> int:
        """Lock or unlock every record of a week; returns the number touched.

        Unlocking leaves PROCESSED and PAID records locked.
        """
        result = await self.session.execute(
            select(IndividualPayroll)
            .where(IndividualPayroll.week_start_date == week_start)
            .with_for_update()
        )
        updated = 0
        for record in result.scalars().all():
            if not locked and PayrollStateMachine.locks_record(record.status):
                continue
            record.is_locked = locked
            updated += 1
        await self._flush()
        action = "locked" if locked else "unlocked"
        logger.info("Week %s %s for %d payroll records", week_start, action, updated)
        return updated

    async def move_load(
        self,
        load_id: UUID,
        target_week_start: date,
        moved_by: str | None = None,
        reason: str | None = None,
    ) -> LoadMove:
        """Pay a load in a different week than the one it was delivered in.

        A week holding any locked record refuses the move with
        RecordLockedError, on either side. The driver's existing records for
        both weeks are recalculated in the same unit of work; a week without
        a record picks the load up on its next calculation.
        """
        result = await self.session.execute(
            select(Load).where(Load.load_id == load_id).with_for_update()
        )
        load = result.scalar_one_or_none()
        if load is None:
            raise NotFoundError("Load", load_id)
        if load.driver_id is None:
            raise ValidationError(f"Load {load.load_number} is not assigned to a driver")

        from_week = load.pay_week_start
        if from_week is None and load.delivery_date is not None:
            from_week = week_start_for(load.delivery_date)
        to_week = week_start_for(target_week_start)
        if from_week == to_week:
            raise ValidationError(
                f"Load {load.load_number} is already paid in week {to_week}",
                field="target_week_start",
            )
        weeks = [week for week in (from_week, to_week) if week is not None]
        for week in weeks:
            await self._ensure_week_open(week)

        load.pay_week_start = to_week
        await self._flush()

        move = LoadMove(load=load, from_week=from_week, to_week=to_week)
        for week in weeks:
            record = await self.find_payroll(load.driver_id, week)
            if record is None:
                continue
            async with employee_period_lock(self.session, record.employee_id, week):
                move.recalculated.append(
                    await self._calculate_record(record, record.week_end_date)
                )

        logger.info(
            "Load %s moved from week %s to week %s by %s: %s",
            load.load_number,
            from_week,
            to_week,
            moved_by or "system",
            reason or "manual move",
        )
        return move

    async def _ensure_week_open(self, week_start: date) -> None:
        locked_id = await self.session.scalar(
            select(IndividualPayroll.payroll_id)
            .where(IndividualPayroll.week_start_date == week_start)
            .where(IndividualPayroll.is_locked.is_(True))
            .limit(1)
        )
        if locked_id is not None:
            raise RecordLockedError(locked_id, f"Week {week_start} is locked")

    async def delete_payroll(self, payroll_id: UUID) -> None:
        """Delete a DRAFT or CALCULATED record with its paystub and links."""
        record = await self.get_payroll(payroll_id, for_update=True)
        if record.status == PayrollStatus.PAID.value or record.is_locked:
            raise RecordLockedError(payroll_id)
        if not PayrollStateMachine.can_delete(record.status):
            raise InvalidTransitionError(
                record.status, "DELETED", "only DRAFT or CALCULATED records can be deleted"
            )
        await self.session.execute(delete(Paystub).where(Paystub.payroll_id == payroll_id))
        await self.session.execute(
            delete(PayrollLoad).where(PayrollLoad.payroll_id == payroll_id)
        )
        await self.session.execute(
            delete(PayrollAdjustmentLink).where(PayrollAdjustmentLink.payroll_id == payroll_id)
        )
        await self.session.delete(record)
        await self._flush()
        logger.info("Payroll %s deleted", payroll_id)

    # === Paystubs ===

    async def regenerate_paystub(self, payroll_id: UUID) -> Paystub:
        """Refresh an existing paystub from its (processed) record."""
        record = await self.get_payroll(payroll_id)
        if not PayrollStateMachine.locks_record(record.status):
            raise ValidationError("Paystubs can only be regenerated for processed records")
        if await self.get_paystub(payroll_id) is None:
            raise NotFoundError("Paystub for payroll", payroll_id)
        employee = await self.session.get(Employee, record.employee_id)
        paystub = await self._write_paystub(record, employee)
        await self._flush()
        return paystub

    async def _write_paystub(self, record: IndividualPayroll, employee: Employee) -> Paystub:
        paystub = await self.get_paystub(record.payroll_id)
        if paystub is None:
            paystub = Paystub(paystub_id=uuid4(), payroll_id=record.payroll_id, regenerated_count=0)
            self.session.add(paystub)
        else:
            paystub.regenerated_count += 1
        paystub.employee_id = record.employee_id
        paystub.employee_name = employee.name
        paystub.week_start_date = record.week_start_date
        paystub.week_end_date = record.week_end_date
        paystub.pay_date = record.pay_date
        paystub.status = "PAID" if record.status == PayrollStatus.PAID.value else "APPROVED"
        paystub.total_loads = record.total_loads
        paystub.total_miles = record.total_miles
        for name in PAYROLL_MONEY_FIELDS:
            setattr(paystub, name, getattr(record, name))
        paystub.calculation_id = record.calculation_id
        paystub.generated_at = utcnow()
        return paystub

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Payroll write conflicted with existing data: {exc.orig}") from exc
