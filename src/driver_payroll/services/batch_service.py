"""Batch payroll: every eligible employee for a week, failures isolated."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from driver_payroll.calculators.mileage import MileageResolver
from driver_payroll.calculators.periods import week_end_for
from driver_payroll.calculators.types import COUNTED_LOAD_STATUSES, ZERO, EmployeeStatus
from driver_payroll.config import Settings, get_settings
from driver_payroll.errors import CalculationError, PayrollEngineError, RecordLockedError
from driver_payroll.models import Employee, IndividualPayroll, Load
from driver_payroll.services.payroll_service import PayrollRecordService

logger = logging.getLogger(__name__)


@dataclass
class BatchRow:
    """Outcome for one employee."""

    employee_id: UUID
    employee_name: str
    status: str  # success | error | skipped
    payroll_id: UUID | None = None
    gross_pay: Decimal = ZERO
    net_pay: Decimal = ZERO
    total_deductions: Decimal = ZERO
    reimbursements: Decimal = ZERO
    total_loads: int = 0
    message: str | None = None
    load_number: str | None = None

    @property
    def success(self) -> bool:
        return self.status == "success"

    @classmethod
    def from_record(cls, employee: Employee, record: IndividualPayroll) -> BatchRow:
        return cls(
            employee_id=employee.employee_id,
            employee_name=employee.name,
            status="success",
            payroll_id=record.payroll_id,
            gross_pay=record.gross_pay,
            net_pay=record.net_pay,
            total_deductions=record.total_deductions,
            reimbursements=record.reimbursements,
            total_loads=record.total_loads,
        )


@dataclass
class BatchTotals:
    """Period totals over successful rows only."""

    employee_count: int = 0
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    gross_pay: Decimal = ZERO
    net_pay: Decimal = ZERO
    total_deductions: Decimal = ZERO
    reimbursements: Decimal = ZERO
    total_loads: int = 0

    @classmethod
    def from_rows(cls, rows: list[BatchRow]) -> BatchTotals:
        totals = cls(employee_count=len(rows))
        for row in rows:
            if row.status == "success":
                totals.success_count += 1
                totals.gross_pay += row.gross_pay
                totals.net_pay += row.net_pay
                totals.total_deductions += row.total_deductions
                totals.reimbursements += row.reimbursements
                totals.total_loads += row.total_loads
            elif row.status == "error":
                totals.error_count += 1
            else:
                totals.skipped_count += 1
        return totals


@dataclass
class BatchResult:
    week_start: date
    week_end: date
    results: list[BatchRow] = field(default_factory=list)
    totals: BatchTotals = field(default_factory=BatchTotals)

    @property
    def errors(self) -> list[BatchRow]:
        return [r for r in self.results if r.status == "error"]


class BatchPayrollService:
    """Runs the period calculation for many employees.

    Each employee gets its own session and transaction, so one bad record
    never rolls back another. Employees run concurrently up to the
    configured limit.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        mileage_resolver: MileageResolver | None = None,
        settings: Settings | None = None,
        concurrency: int | None = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.mileage_resolver = mileage_resolver
        self.concurrency = max(1, concurrency or self.settings.batch_concurrency)

    async def run_batch_payroll(
        self,
        week_start: date,
        week_end: date | None = None,
        employee_ids: list[UUID] | None = None,
        skip_without_loads: bool = False,
    ) -> BatchResult:
        """Calculate payroll for every eligible employee.

        Never raises for a per-employee failure; those come back as error
        rows. Locked records come back as skipped rows.
        """
        week_end = week_end or week_end_for(week_start)
        employees, missing = await self._eligible_employees(employee_ids)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_one(employee: Employee) -> BatchRow:
            async with semaphore:
                return await self._run_employee(employee, week_start, week_end, skip_without_loads)

        rows = list(await asyncio.gather(*(run_one(e) for e in employees)))
        for employee_id in missing:
            rows.append(
                BatchRow(
                    employee_id=employee_id,
                    employee_name="",
                    status="error",
                    message=f"Employee {employee_id} not found",
                )
            )

        result = BatchResult(
            week_start=week_start,
            week_end=week_end,
            results=rows,
            totals=BatchTotals.from_rows(rows),
        )
        logger.info(
            "Batch payroll for week %s: %d succeeded, %d failed, %d skipped",
            week_start,
            result.totals.success_count,
            result.totals.error_count,
            result.totals.skipped_count,
        )
        return result

    async def _eligible_employees(
        self, employee_ids: list[UUID] | None
    ) -> tuple[list[Employee], list[UUID]]:
        async with self.session_factory() as session:
            stmt = select(Employee).where(Employee.status == EmployeeStatus.ACTIVE.value)
            if employee_ids is not None:
                stmt = stmt.where(Employee.employee_id.in_(employee_ids))
            result = await session.execute(stmt.order_by(Employee.name))
            employees = list(result.scalars().all())
            if employee_ids is None:
                return employees, []

            # Requested but inactive employees are left out without an error row
            known = set(
                await session.scalars(
                    select(Employee.employee_id).where(Employee.employee_id.in_(employee_ids))
                )
            )
            return employees, [i for i in employee_ids if i not in known]

    async def _run_employee(
        self,
        employee: Employee,
        week_start: date,
        week_end: date,
        skip_without_loads: bool,
    ) -> BatchRow:
        async with self.session_factory() as session:
            try:
                if skip_without_loads and not await self._has_loads(
                    session, employee.employee_id, week_start, week_end
                ):
                    return BatchRow(
                        employee_id=employee.employee_id,
                        employee_name=employee.name,
                        status="skipped",
                        message="No delivered loads in period",
                    )
                service = PayrollRecordService(session, self.mileage_resolver, self.settings)
                record = await service.compute_period_payroll(
                    employee.employee_id, week_start, week_end, recalculate=True
                )
                await session.commit()
                return BatchRow.from_record(employee, record)
            except RecordLockedError as exc:
                await session.rollback()
                return BatchRow(
                    employee_id=employee.employee_id,
                    employee_name=employee.name,
                    status="skipped",
                    message=str(exc),
                )
            except PayrollEngineError as exc:
                await session.rollback()
                logger.error("Payroll failed for employee %s: %s", employee.employee_id, exc)
                return BatchRow(
                    employee_id=employee.employee_id,
                    employee_name=employee.name,
                    status="error",
                    message=str(exc),
                    load_number=exc.load_number if isinstance(exc, CalculationError) else None,
                )
            except Exception as exc:
                await session.rollback()
                logger.exception("Unexpected payroll failure for employee %s", employee.employee_id)
                return BatchRow(
                    employee_id=employee.employee_id,
                    employee_name=employee.name,
                    status="error",
                    message=f"Unexpected error: {exc}",
                )

    @staticmethod
    async def _has_loads(
        session: AsyncSession, employee_id: UUID, week_start: date, week_end: date
    ) -> bool:
        count = await session.scalar(
            select(func.count())
            .select_from(Load)
            .where(Load.driver_id == employee_id)
            .where(Load.status.in_(COUNTED_LOAD_STATUSES))
            .where(Load.delivery_date >= week_start)
            .where(Load.delivery_date <= week_end)
        )
        return bool(count)
