"""Period aggregator: one employee, one week, everything that moves net pay."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from driver_payroll.calculators.adjustments import split_adjustments
from driver_payroll.calculators.load_earnings import compute_load_earnings
from driver_payroll.calculators.mileage import MileageResolver
from driver_payroll.calculators.money import round_to_cents
from driver_payroll.calculators.periods import pay_date_for, week_end_for
from driver_payroll.calculators.types import (
    COUNTED_LOAD_STATUSES,
    ZERO,
    AdjustmentTotals,
    DepositPolicy,
    LoadEarningsResult,
    LoadInput,
    MileageMethod,
    PaymentMethod,
    PaymentTerms,
    canonical_decimal,
)
from driver_payroll.config import Settings, get_settings
from driver_payroll.errors import NotFoundError, ValidationError
from driver_payroll.models import (
    PAYROLL_MONEY_FIELDS,
    Adjustment,
    AdvanceEntry,
    Employee,
    FuelTransaction,
    IndividualPayroll,
    Load,
    RecurringDeduction,
)
from driver_payroll.services.adjustments import AdjustmentSet, adjustment_variant
from driver_payroll.services.advance_ledger import AdvanceLedger
from driver_payroll.services.escrow_ledger import EscrowDecision, EscrowLedger
from driver_payroll.services.payment_config_service import PaymentConfigService
from driver_payroll.services.recurring_deductions import RecurringDeductionSet

logger = logging.getLogger(__name__)


@dataclass
class PeriodCalculation:
    """Unrounded payroll figures for one employee and week, plus the inputs used."""

    employee_id: UUID
    week_start: date
    week_end: date
    pay_date: date
    terms: PaymentTerms
    earnings: LoadEarningsResult
    adjustment_totals: AdjustmentTotals
    escrow: EscrowDecision

    fuel_transactions: list[FuelTransaction] = field(default_factory=list)
    recurring: list[RecurringDeduction] = field(default_factory=list)
    repayments: list[AdvanceEntry] = field(default_factory=list)
    adjustments: list[Adjustment] = field(default_factory=list)

    fuel_from_transactions: Decimal = ZERO
    recurring_fees: Decimal = ZERO
    scheduled_repayments: Decimal = ZERO

    inputs_fingerprint: str = ""

    @property
    def base_pay(self) -> Decimal:
        return self.earnings.base_pay

    @property
    def bonus_amount(self) -> Decimal:
        return self.adjustment_totals.bonus_amount

    @property
    def reimbursements(self) -> Decimal:
        return self.adjustment_totals.reimbursements

    @property
    def overtime(self) -> Decimal:
        return self.adjustment_totals.overtime

    @property
    def other_earnings(self) -> Decimal:
        return self.adjustment_totals.other_earnings

    @property
    def gross_pay(self) -> Decimal:
        return (
            self.base_pay
            + self.bonus_amount
            + self.reimbursements
            + self.overtime
            + self.other_earnings
        )

    @property
    def fuel_deductions(self) -> Decimal:
        return self.fuel_from_transactions + self.adjustment_totals.fuel_deductions

    @property
    def advance_repayments(self) -> Decimal:
        return self.scheduled_repayments + self.adjustment_totals.advance_repayments

    @property
    def other_deductions(self) -> Decimal:
        return self.adjustment_totals.other_deductions

    @property
    def escrow_deposits(self) -> Decimal:
        return self.escrow.amount

    @property
    def deductions_before_escrow(self) -> Decimal:
        return (
            self.fuel_deductions
            + self.advance_repayments
            + self.recurring_fees
            + self.other_deductions
        )

    @property
    def total_deductions(self) -> Decimal:
        return self.deductions_before_escrow + self.escrow_deposits

    @property
    def net_pay(self) -> Decimal:
        # Not floored: negative net pay must stay visible to reviewers
        return self.gross_pay - self.total_deductions

    def money_fields(self) -> dict[str, Decimal]:
        """All persisted money fields, rounded to cents."""
        values = {
            "gross_revenue": self.earnings.gross_revenue,
            "service_fee": self.earnings.service_fee,
            "company_share": self.earnings.company_share,
            "base_pay": self.base_pay,
            "bonus_amount": self.bonus_amount,
            "overtime": self.overtime,
            "other_earnings": self.other_earnings,
            "reimbursements": self.reimbursements,
            "gross_pay": self.gross_pay,
            "fuel_deductions": self.fuel_deductions,
            "advance_repayments": self.advance_repayments,
            "recurring_fees": self.recurring_fees,
            "escrow_deposits": self.escrow_deposits,
            "other_deductions": self.other_deductions,
            "total_deductions": self.total_deductions,
            "net_pay": self.net_pay,
        }
        return {name: round_to_cents(values[name]) for name in PAYROLL_MONEY_FIELDS}

    def calculation_id(self, engine_version: str) -> UUID:
        """Deterministic id for this employee, week, engine and inputs."""
        data = {
            "employee_id": str(self.employee_id),
            "week_start": self.week_start.isoformat(),
            "engine_version": engine_version,
            "inputs_fingerprint": self.inputs_fingerprint,
        }
        json_str = json.dumps(data, sort_keys=True)
        hash_bytes = hashlib.sha256(json_str.encode()).digest()
        return UUID(bytes=hash_bytes[:16])

    def apply_to(self, record: IndividualPayroll, engine_version: str) -> None:
        """Write the rounded figures onto a payroll record.

        This is the only place payroll amounts are rounded.
        """
        for name, value in self.money_fields().items():
            setattr(record, name, value)
        record.week_end_date = self.week_end
        record.pay_date = self.pay_date
        record.payment_method = self.terms.method.value
        record.total_loads = self.earnings.load_count
        record.total_miles = self.earnings.total_miles
        suggestion = self.escrow.surfaced_suggestion
        record.escrow_suggestion = round_to_cents(suggestion) if suggestion is not None else None
        record.inputs_fingerprint = self.inputs_fingerprint
        record.calculation_id = self.calculation_id(engine_version)
        record.engine_version = engine_version


class PeriodAggregator:
    """Builds a PeriodCalculation from loads, fuel and the four ledgers.

    Steps, in order:
    1) Loads → earnings (gross revenue, miles, base pay)
    2) Fuel transactions → fuel deductions
    3) Recurring deductions due this week
    4) Advance repayments due this week
    5) Adjustments split by variant
    6) Escrow deposit for the week
    7-9) Gross pay, total deductions, net pay (derived on the result)
    """

    def __init__(
        self,
        session: AsyncSession,
        mileage_resolver: MileageResolver | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.mileage_resolver = mileage_resolver
        self.configs = PaymentConfigService(session)
        self.advances = AdvanceLedger(session, self.settings)
        self.escrow = EscrowLedger(session, self.settings)
        self.recurring = RecurringDeductionSet(session, self.settings)
        self.adjustment_set = AdjustmentSet(session)

    async def calculate(
        self,
        employee_id: UUID,
        week_start: date,
        week_end: date | None = None,
    ) -> PeriodCalculation:
        week_end = week_end or week_end_for(week_start)
        if week_end < week_start:
            raise ValidationError("Period end is before period start", field="week_end")

        employee = await self.session.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)

        # Config in effect at the close of the period
        config = await self.configs.resolve(employee_id, week_end)
        terms = PaymentTerms.from_config(config)

        # 1) Loads
        loads = await self._counted_loads(employee_id, week_start, week_end)
        load_inputs = [await self._load_input(load, terms) for load in loads]
        earnings = compute_load_earnings(load_inputs, terms, employee_id=employee_id)

        # 2) Fuel
        fuel = await self._fuel_transactions(employee, week_start, week_end)
        fuel_total = sum((t.amount + (t.fees or ZERO) for t in fuel), ZERO)

        # 3) Recurring fees
        recurring = await self.recurring.due_for_week(employee_id, week_start)
        recurring_total = sum((r.amount for r in recurring), ZERO)

        # 4) Advance repayments
        repayments = await self.advances.due_repayments(employee_id, week_start)
        repayment_total = sum((abs(r.amount) for r in repayments), ZERO)

        # 5) Adjustments
        adjustments = await self.adjustment_set.for_week(employee_id, week_start)
        adjustment_totals = split_adjustments(adjustment_variant(a) for a in adjustments)

        calculation = PeriodCalculation(
            employee_id=employee_id,
            week_start=week_start,
            week_end=week_end,
            pay_date=pay_date_for(week_end),
            terms=terms,
            earnings=earnings,
            adjustment_totals=adjustment_totals,
            escrow=EscrowDecision(policy=DepositPolicy.none()),
            fuel_transactions=fuel,
            recurring=recurring,
            repayments=repayments,
            adjustments=adjustments,
            fuel_from_transactions=fuel_total,
            recurring_fees=recurring_total,
            scheduled_repayments=repayment_total,
        )

        # 6) Escrow, judged against net pay before any deposit
        potential_net = calculation.gross_pay - calculation.deductions_before_escrow
        calculation.escrow = await self.escrow.deposit_for_week(
            employee_id, week_start, potential_net
        )

        calculation.inputs_fingerprint = self._fingerprint(calculation, load_inputs)
        logger.debug(
            "Calculated employee %s week %s: gross %s net %s",
            employee_id,
            week_start,
            calculation.gross_pay,
            calculation.net_pay,
        )
        return calculation

    async def _counted_loads(
        self, employee_id: UUID, week_start: date, week_end: date
    ) -> list[Load]:
        # A moved load is paid in its assigned week, not its delivery week
        result = await self.session.execute(
            select(Load)
            .where(Load.driver_id == employee_id)
            .where(Load.status.in_(COUNTED_LOAD_STATUSES))
            .where(
                or_(
                    Load.pay_week_start.between(week_start, week_end),
                    and_(
                        Load.pay_week_start.is_(None),
                        Load.delivery_date >= week_start,
                        Load.delivery_date <= week_end,
                    ),
                )
            )
            .order_by(Load.delivery_date, Load.load_number)
        )
        return list(result.scalars().all())

    async def _load_input(self, load: Load, terms: PaymentTerms) -> LoadInput:
        """LoadInput for a load, resolving miles only where they are paid."""
        load_input = LoadInput.from_model(load)
        if terms.method != PaymentMethod.PAY_PER_MILE or load.final_miles is not None:
            return load_input
        if self.mileage_resolver is None or not (load.origin_zip and load.destination_zip):
            logger.warning("Load %s has no recorded or resolvable miles", load.load_number)
            return LoadInput(
                load_number=load.load_number,
                gross_amount=load.gross_amount,
                final_miles=ZERO,
                driver_rate=load.driver_rate,
                load_id=load.load_id,
                mileage_method=MileageMethod.ESTIMATED,
            )
        mileage = await self.mileage_resolver.resolve(load.origin_zip, load.destination_zip)
        return LoadInput(
            load_number=load.load_number,
            gross_amount=load.gross_amount,
            final_miles=Decimal(mileage.miles),
            driver_rate=load.driver_rate,
            load_id=load.load_id,
            mileage_method=mileage.method,
        )

    async def _fuel_transactions(
        self, employee: Employee, week_start: date, week_end: date
    ) -> list[FuelTransaction]:
        result = await self.session.execute(
            select(FuelTransaction)
            .where(
                or_(
                    FuelTransaction.driver_id == employee.employee_id,
                    and_(
                        FuelTransaction.driver_id.is_(None),
                        FuelTransaction.driver_name == employee.name,
                    ),
                )
            )
            .where(FuelTransaction.transaction_date >= week_start)
            .where(FuelTransaction.transaction_date <= week_end)
            .order_by(FuelTransaction.transaction_date)
        )
        return list(result.scalars().all())

    @staticmethod
    def _fingerprint(calculation: PeriodCalculation, load_inputs: list[LoadInput]) -> str:
        """sha256 over a canonical, order-independent view of every input."""
        escrow = calculation.escrow
        data: dict[str, Any] = {
            "week_end": calculation.week_end.isoformat(),
            "terms": calculation.terms.to_canonical_dict(),
            "loads": sorted(
                (load.to_canonical_dict() for load in load_inputs),
                key=lambda d: d["load_number"],
            ),
            "fuel": sorted(
                [
                    str(t.fuel_transaction_id),
                    canonical_decimal(t.amount),
                    canonical_decimal(t.fees),
                ]
                for t in calculation.fuel_transactions
            ),
            "recurring": sorted(
                [str(r.deduction_id), canonical_decimal(r.amount)] for r in calculation.recurring
            ),
            "repayments": sorted(
                [str(r.entry_id), canonical_decimal(r.amount)] for r in calculation.repayments
            ),
            "adjustments": sorted(
                [str(a.adjustment_id), a.category, a.adjustment_type, canonical_decimal(a.amount)]
                for a in calculation.adjustments
            ),
            "escrow": {
                "policy": escrow.policy.kind.value,
                "amount": canonical_decimal(escrow.amount),
                "posted": escrow.posted,
                "suggestion": canonical_decimal(escrow.surfaced_suggestion),
            },
        }
        json_str = json.dumps(data, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]
