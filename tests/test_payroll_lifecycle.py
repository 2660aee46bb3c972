"""Tests for period aggregation and the payroll record lifecycle."""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from driver_payroll.calculators.mileage import MileageResult
from driver_payroll.calculators.types import AdvanceStatus, MileageMethod
from driver_payroll.errors import (
    AlreadyLockedError,
    CalculationError,
    ConflictError,
    InvalidTransitionError,
    NotCalculatedError,
    NotFoundError,
    RecordLockedError,
    ValidationError,
)
from driver_payroll.services.adjustments import AdjustmentSet
from driver_payroll.services.advance_ledger import AdvanceLedger
from driver_payroll.services.aggregator import PeriodAggregator
from driver_payroll.services.escrow_ledger import EscrowLedger
from driver_payroll.services.payroll_service import PayrollRecordService
from driver_payroll.services.recurring_deductions import RecurringDeductionSet

WEEK = date(2024, 1, 8)


class FixedMileage:
    """Mileage resolver stand-in that always answers the same distance."""

    def __init__(self, miles: int):
        self.miles = miles
        self.calls: list[tuple[str, str]] = []

    async def resolve(self, from_zip: str, to_zip: str) -> MileageResult:
        self.calls.append((from_zip, to_zip))
        return MileageResult(self.miles, MileageMethod.CALCULATED, from_zip, to_zip)


@pytest.fixture
def service(session, settings) -> PayrollRecordService:
    return PayrollRecordService(session, settings=settings)


@pytest.fixture
async def full_week(session, settings, percentage_driver, make_fuel):
    """The percentage driver with every kind of ledger activity in the week.

    Expected: base 2194.50 + bonus 100 = gross 2294.50; deductions are fuel
    202.50, ELD 45, advance 150 and manual escrow 75, so net is 1822.00.
    """
    employee = percentage_driver
    await AdjustmentSet(session).create(
        employee.employee_id, "BONUS", Decimal("100"), WEEK + timedelta(days=3)
    )
    await make_fuel(employee, Decimal("200"), fees=Decimal("2.50"))
    await RecurringDeductionSet(session, settings).add(
        employee.employee_id, WEEK, "ELD", Decimal("45")
    )
    await AdvanceLedger(session, settings).create_advance(
        employee.employee_id, Decimal("600"), 4, advance_date=date(2024, 1, 3)
    )
    await EscrowLedger(session, settings).open_account(
        employee.employee_id, weekly_amount=Decimal("75")
    )
    return employee


class TestPeriodAggregator:
    """Test the figures produced for one employee and week."""

    async def test_basic_percentage_week(self, session, settings, percentage_driver):
        aggregator = PeriodAggregator(session, settings=settings)

        calculation = await aggregator.calculate(percentage_driver.employee_id, WEEK)

        fields = calculation.money_fields()
        assert fields["gross_revenue"] == Decimal("3300.00")
        assert fields["service_fee"] == Decimal("165.00")
        assert fields["base_pay"] == Decimal("2194.50")
        assert fields["company_share"] == Decimal("940.50")
        assert fields["net_pay"] == Decimal("2194.50")
        assert calculation.pay_date == date(2024, 1, 19)
        assert calculation.earnings.load_count == 3

    async def test_full_week(self, session, settings, full_week):
        aggregator = PeriodAggregator(session, settings=settings)

        calculation = await aggregator.calculate(full_week.employee_id, WEEK)

        fields = calculation.money_fields()
        assert fields["gross_pay"] == Decimal("2294.50")
        assert fields["fuel_deductions"] == Decimal("202.50")
        assert fields["recurring_fees"] == Decimal("45.00")
        assert fields["advance_repayments"] == Decimal("150.00")
        assert fields["escrow_deposits"] == Decimal("75.00")
        assert fields["total_deductions"] == Decimal("472.50")
        assert fields["net_pay"] == Decimal("1822.00")

    async def test_only_counted_loads_in_window(self, session, settings, make_employee, make_load):
        employee = await make_employee()
        await make_load(employee, "L-1", Decimal("1000"))
        await make_load(employee, "L-2", Decimal("1000"), status="BOOKED")
        await make_load(employee, "L-3", Decimal("1000"), delivery_date=date(2024, 1, 15))
        await make_load(employee, "L-4", Decimal("1000"), status="PAID")

        calculation = await PeriodAggregator(session, settings=settings).calculate(
            employee.employee_id, WEEK
        )

        assert [e.load_number for e in calculation.earnings.per_load] == ["L-1", "L-4"]

    async def test_fuel_matched_by_name(self, session, settings, percentage_driver, make_fuel):
        """Fuel rows without a driver id are matched on the driver's name."""
        await make_fuel(None, Decimal("30"), driver_name="Maria Lopez")
        await make_fuel(None, Decimal("99"), driver_name="Someone Else")

        calculation = await PeriodAggregator(session, settings=settings).calculate(
            percentage_driver.employee_id, WEEK
        )

        assert calculation.fuel_deductions == Decimal("30")

    async def test_auto_escrow_suggestion_not_deducted(
        self, session, settings, percentage_driver
    ):
        await EscrowLedger(session, settings).open_account(percentage_driver.employee_id)

        calculation = await PeriodAggregator(session, settings=settings).calculate(
            percentage_driver.employee_id, WEEK
        )

        assert calculation.escrow_deposits == Decimal("0")
        assert calculation.escrow.surfaced_suggestion == Decimal("417")

    async def test_fingerprint_tracks_inputs(self, session, settings, percentage_driver, make_load):
        aggregator = PeriodAggregator(session, settings=settings)
        first = await aggregator.calculate(percentage_driver.employee_id, WEEK)
        again = await aggregator.calculate(percentage_driver.employee_id, WEEK)
        assert first.inputs_fingerprint == again.inputs_fingerprint
        assert first.calculation_id("v1") == again.calculation_id("v1")
        assert first.calculation_id("v1") != first.calculation_id("v2")

        await make_load(percentage_driver, "L-1004", Decimal("10"))
        changed = await aggregator.calculate(percentage_driver.employee_id, WEEK)
        assert changed.inputs_fingerprint != first.inputs_fingerprint

    async def test_period_end_before_start(self, session, settings, percentage_driver):
        with pytest.raises(ValidationError):
            await PeriodAggregator(session, settings=settings).calculate(
                percentage_driver.employee_id, WEEK, WEEK - timedelta(days=1)
            )


class TestComputePayroll:
    """Test record creation and recalculation."""

    async def test_creates_calculated_record(self, service, percentage_driver):
        record = await service.compute_period_payroll(percentage_driver.employee_id, WEEK)

        assert record.status == "CALCULATED"
        assert record.is_locked is False
        assert record.week_end_date == date(2024, 1, 14)
        assert record.pay_date == date(2024, 1, 19)
        assert record.payment_method == "PERCENTAGE"
        assert record.total_loads == 3
        assert record.service_fee == Decimal("165.00")
        assert record.base_pay == Decimal("2194.50")
        assert record.company_share == Decimal("940.50")
        assert record.engine_version == "test-1"
        assert record.inputs_fingerprint is not None
        assert record.calculation_id is not None

        lines = await service.loads_for(record.payroll_id)
        assert [line.load_number for line in lines] == ["L-1001", "L-1002", "L-1003"]
        assert lines[0].driver_share == Decimal("665.00")

    async def test_full_week_record(self, service, full_week):
        record = await service.compute_period_payroll(full_week.employee_id, WEEK)

        assert record.gross_pay == Decimal("2294.50")
        assert record.total_deductions == Decimal("472.50")
        assert record.net_pay == Decimal("1822.00")
        assert len(await service.adjustment_links_for(record.payroll_id)) == 1

    async def test_negative_net_pay_is_kept(self, session, service, make_employee, make_load):
        employee = await make_employee()
        await make_load(employee, "L-9", Decimal("100"))
        await AdjustmentSet(session).create(
            employee.employee_id, "DEDUCTION", Decimal("200"), WEEK, "DAMAGE"
        )

        record = await service.compute_period_payroll(employee.employee_id, WEEK)

        assert record.base_pay == Decimal("66.50")
        assert record.net_pay == Decimal("-133.50")

    async def test_existing_record_requires_recalculate(self, service, percentage_driver):
        await service.compute_period_payroll(percentage_driver.employee_id, WEEK)

        with pytest.raises(ConflictError):
            await service.compute_period_payroll(percentage_driver.employee_id, WEEK)

    async def test_recalculation_with_same_inputs_is_a_no_op(self, service, full_week):
        record = await service.compute_period_payroll(full_week.employee_id, WEEK)
        fingerprint = record.inputs_fingerprint
        calculated_at = record.calculated_at

        again = await service.compute_period_payroll(full_week.employee_id, WEEK, recalculate=True)

        assert again is record
        assert again.inputs_fingerprint == fingerprint
        assert again.calculated_at == calculated_at
        assert again.net_pay == Decimal("1822.00")

    async def test_recalculation_picks_up_new_inputs(self, service, percentage_driver, make_load):
        record = await service.compute_period_payroll(percentage_driver.employee_id, WEEK)
        await make_load(percentage_driver, "L-1004", Decimal("200"))

        again = await service.calculate(record.payroll_id)

        assert again.total_loads == 4
        assert again.gross_revenue == Decimal("3500.00")
        assert len(await service.loads_for(record.payroll_id)) == 4

    async def test_reviewed_record_can_be_recalculated(
        self, service, percentage_driver, make_load
    ):
        record = await service.compute_period_payroll(percentage_driver.employee_id, WEEK)
        await service.review(record.payroll_id, reviewed_by="lead")
        await make_load(percentage_driver, "L-1004", Decimal("200"))

        again = await service.calculate(record.payroll_id)

        assert again.status == "CALCULATED"
        assert again.reviewed_by == "lead"

    async def test_unknown_employee(self, service):
        with pytest.raises(NotFoundError):
            await service.compute_period_payroll(uuid4(), WEEK)

    async def test_missing_payment_config(self, session, service, make_employee):
        employee = await make_employee(effective_date=date(2024, 6, 3))

        with pytest.raises(CalculationError):
            await service.compute_period_payroll(employee.employee_id, WEEK)

    async def test_pay_per_mile_resolves_missing_miles(
        self, session, settings, make_employee, make_load
    ):
        employee = await make_employee(
            method="PAY_PER_MILE",
            driver_percent=Decimal("0"),
            company_percent=Decimal("0"),
            pay_per_mile_rate=Decimal("0.65"),
        )
        await make_load(
            employee, "L-7", Decimal("1000"), origin_zip="75201", destination_zip="77001"
        )
        await make_load(employee, "L-8", Decimal("500"), final_miles=Decimal("100"))
        resolver = FixedMileage(240)
        service = PayrollRecordService(session, resolver, settings)

        record = await service.compute_period_payroll(employee.employee_id, WEEK)

        assert resolver.calls == [("75201", "77001")]
        assert record.total_miles == Decimal("340")
        assert record.base_pay == Decimal("221.00")
        lines = await service.loads_for(record.payroll_id)
        methods = {line.load_number: line.mileage_method for line in lines}
        assert methods == {"L-7": "CALCULATED", "L-8": "RECORDED"}

    async def test_pay_per_mile_without_zips_pays_zero(
        self, session, settings, make_employee, make_load
    ):
        employee = await make_employee(
            method="PAY_PER_MILE",
            driver_percent=Decimal("0"),
            company_percent=Decimal("0"),
            pay_per_mile_rate=Decimal("0.65"),
        )
        await make_load(employee, "L-7", Decimal("1000"))
        service = PayrollRecordService(session, FixedMileage(240), settings)

        record = await service.compute_period_payroll(employee.employee_id, WEEK)

        assert record.base_pay == Decimal("0")
        [line] = await service.loads_for(record.payroll_id)
        assert line.mileage_method == "ESTIMATED"

    async def test_flat_rate_without_driver_rate(self, service, make_employee, make_load):
        employee = await make_employee(method="FLAT_RATE")
        await make_load(employee, "L-3001", Decimal("1000"))

        with pytest.raises(CalculationError) as exc_info:
            await service.compute_period_payroll(employee.employee_id, WEEK)

        assert exc_info.value.load_number == "L-3001"


class TestProcessPayroll:
    """Test processing, payment and unlock."""

    async def test_process_writes_paystub_and_ledgers(self, session, settings, service, full_week):
        record = await service.compute_period_payroll(full_week.employee_id, WEEK)

        paystub = await service.process_payroll(record.payroll_id, processed_by="payroll-admin")

        assert record.status == "PROCESSED"
        assert record.is_locked is True
        assert record.processed_by == "payroll-admin"
        assert paystub.net_pay == Decimal("1822.00")
        assert paystub.employee_name == "Maria Lopez"
        assert paystub.calculation_id == record.calculation_id
        assert paystub.regenerated_count == 0

        [repayment] = await AdvanceLedger(session, settings).due_repayments(
            full_week.employee_id, WEEK
        )
        assert repayment.status == AdvanceStatus.COMPLETED.value
        assert repayment.applied_payroll_id == record.payroll_id

        escrow = EscrowLedger(session, settings)
        [deposit] = await escrow.transactions(full_week.employee_id)
        assert deposit.transaction_type == "DEPOSIT"
        assert deposit.amount == Decimal("75")
        assert deposit.paystub_id == paystub.paystub_id
        account = await escrow.require_account(full_week.employee_id)
        assert account.current_balance == Decimal("75")

    async def test_cleared_escrow_override_requires_recalculation(
        self, session, settings, service, full_week
    ):
        record = await service.compute_period_payroll(full_week.employee_id, WEEK)
        escrow = EscrowLedger(session, settings)
        await escrow.set_weekly_amount(full_week.employee_id, None)

        with pytest.raises(ConflictError):
            await service.process_payroll(record.payroll_id)

        assert record.status == "CALCULATED"
        assert record.is_locked is False
        assert await service.get_paystub(record.payroll_id) is None
        assert await escrow.transactions(full_week.employee_id) == []

        recalculated = await service.calculate(record.payroll_id)
        assert recalculated.escrow_deposits == 0
        assert recalculated.net_pay == Decimal("1897.00")

        paystub = await service.process_payroll(record.payroll_id)
        assert paystub.escrow_deposits == 0
        assert paystub.net_pay == Decimal("1897.00")
        assert await escrow.transactions(full_week.employee_id) == []

    async def test_forgiven_advance_requires_recalculation(
        self, session, settings, service, percentage_driver
    ):
        ledger = AdvanceLedger(session, settings)
        creation = await ledger.create_advance(
            percentage_driver.employee_id, Decimal("600"), 4, advance_date=date(2024, 1, 3)
        )
        record = await service.compute_period_payroll(percentage_driver.employee_id, WEEK)
        assert record.advance_repayments == Decimal("150.00")

        await ledger.forgive_advance(creation.advance.entry_id, reason="Hardship")

        with pytest.raises(ConflictError):
            await service.process_payroll(record.payroll_id)
        assert record.status == "CALCULATED"

        recalculated = await service.calculate(record.payroll_id)
        assert recalculated.advance_repayments == 0
        assert recalculated.net_pay == Decimal("2194.50")

        paystub = await service.process_payroll(record.payroll_id)
        assert paystub.advance_repayments == 0
        entries = await ledger.entries_for_employee(percentage_driver.employee_id)
        assert all(entry.applied_payroll_id is None for entry in entries)

    async def test_locked_record_cannot_be_recalculated(self, service, full_week, make_load):
        record = await service.compute_period_payroll(full_week.employee_id, WEEK)
        await service.process_payroll(record.payroll_id)
        await make_load(full_week, "L-1099", Decimal("5000"))

        with pytest.raises(RecordLockedError):
            await service.compute_period_payroll(full_week.employee_id, WEEK, recalculate=True)
        with pytest.raises(RecordLockedError):
            await service.calculate(record.payroll_id)

        assert record.net_pay == Decimal("1822.00")
        assert record.total_loads == 3

    async def test_process_twice(self, service, percentage_driver):
        record = await service.compute_period_payroll(percentage_driver.employee_id, WEEK)
        await service.process_payroll(record.payroll_id)

        with pytest.raises(AlreadyLockedError):
            await service.process_payroll(record.payroll_id)

    async def test_process_draft(self, service, percentage_driver):
        record = await service.create_draft(percentage_driver.employee_id, WEEK)

        with pytest.raises(NotCalculatedError) as exc_info:
            await service.process_payroll(record.payroll_id)

        assert exc_info.value.from_status == "DRAFT"

    async def test_review_and_process(self, service, percentage_driver):
        record = await service.compute_period_payroll(percentage_driver.employee_id, WEEK)

        reviewed = await service.review(record.payroll_id, reviewed_by="lead")
        assert reviewed.status == "REVIEWED"
        assert reviewed.reviewed_at is not None

        await service.process_payroll(record.payroll_id)
        assert record.status == "PROCESSED"

    async def test_unlock_and_recalculate_is_stable(self, session, settings, service, full_week):
        """Applied repayments and posted escrow reproduce the same net pay."""
        record = await service.compute_period_payroll(full_week.employee_id, WEEK)
        await service.process_payroll(record.payroll_id)

        unlocked = await service.unlock(record.payroll_id, reason="Fuel receipt disputed")
        assert unlocked.status == "REVIEWED"
        assert unlocked.is_locked is False
        assert unlocked.notes == "Fuel receipt disputed"

        recalculated = await service.calculate(record.payroll_id)
        assert recalculated.status == "CALCULATED"
        assert recalculated.net_pay == Decimal("1822.00")
        assert recalculated.escrow_deposits == Decimal("75.00")
        assert recalculated.advance_repayments == Decimal("150.00")

        paystub = await service.process_payroll(record.payroll_id)
        assert paystub.regenerated_count == 1
        # The escrow deposit is not posted a second time
        assert len(await EscrowLedger(session, settings).transactions(full_week.employee_id)) == 1

    async def test_paid_record_is_final(self, service, percentage_driver):
        record = await service.compute_period_payroll(percentage_driver.employee_id, WEEK)
        await service.process_payroll(record.payroll_id)

        paid = await service.mark_paid(record.payroll_id)
        assert paid.status == "PAID"
        assert paid.paid_at is not None
        assert (await service.get_paystub(record.payroll_id)).status == "PAID"

        with pytest.raises(InvalidTransitionError):
            await service.unlock(record.payroll_id)
        with pytest.raises(RecordLockedError):
            await service.delete_payroll(record.payroll_id)

    async def test_mark_paid_requires_processing(self, service, percentage_driver):
        record = await service.compute_period_payroll(percentage_driver.employee_id, WEEK)

        with pytest.raises(InvalidTransitionError):
            await service.mark_paid(record.payroll_id)

    async def test_unlock_unprocessed_record(self, service, percentage_driver):
        record = await service.compute_period_payroll(percentage_driver.employee_id, WEEK)

        with pytest.raises(InvalidTransitionError):
            await service.unlock(record.payroll_id)

    async def test_regenerate_paystub(self, service, percentage_driver):
        record = await service.compute_period_payroll(percentage_driver.employee_id, WEEK)
        with pytest.raises(ValidationError):
            await service.regenerate_paystub(record.payroll_id)

        await service.process_payroll(record.payroll_id)
        paystub = await service.regenerate_paystub(record.payroll_id)

        assert paystub.regenerated_count == 1
        assert paystub.net_pay == record.net_pay


class TestDeleteAndWeekLock:
    """Test deletion rules and week-level locking."""

    async def test_delete_calculated_record(self, service, percentage_driver):
        record = await service.compute_period_payroll(percentage_driver.employee_id, WEEK)

        await service.delete_payroll(record.payroll_id)

        assert await service.find_payroll(percentage_driver.employee_id, WEEK) is None
        assert await service.loads_for(record.payroll_id) == []

    async def test_delete_reviewed_record_rejected(self, service, percentage_driver):
        record = await service.compute_period_payroll(percentage_driver.employee_id, WEEK)
        await service.review(record.payroll_id)

        with pytest.raises(InvalidTransitionError):
            await service.delete_payroll(record.payroll_id)

    async def test_delete_processed_record_rejected(self, service, percentage_driver):
        record = await service.compute_period_payroll(percentage_driver.employee_id, WEEK)
        await service.process_payroll(record.payroll_id)

        with pytest.raises(RecordLockedError):
            await service.delete_payroll(record.payroll_id)

    async def test_week_lock(self, service, make_employee, make_load):
        first = await make_employee(name="Maria Lopez")
        second = await make_employee(name="Dale Carter")
        await make_load(first, "L-1", Decimal("1000"))
        await make_load(second, "L-2", Decimal("1000"))
        processed = await service.compute_period_payroll(first.employee_id, WEEK)
        open_record = await service.compute_period_payroll(second.employee_id, WEEK)
        await service.process_payroll(processed.payroll_id)

        assert await service.set_week_lock(WEEK, True) == 2
        assert open_record.is_locked is True
        with pytest.raises(RecordLockedError):
            await service.compute_period_payroll(second.employee_id, WEEK, recalculate=True)

        # Unlocking the week leaves processed records locked
        assert await service.set_week_lock(WEEK, False) == 1
        assert open_record.is_locked is False
        assert processed.is_locked is True


class TestMoveLoad:
    """Test paying a load in a week other than its delivery week."""

    NEXT_WEEK = WEEK + timedelta(days=7)

    @pytest.fixture
    async def moved(self, make_employee, make_load):
        employee = await make_employee()
        await make_load(employee, "L-1001", Decimal("1000"))
        await make_load(employee, "L-1002", Decimal("1500"))
        load = await make_load(employee, "L-1003", Decimal("800"))
        return employee, load

    async def test_move_recalculates_source_week(self, service, moved):
        employee, load = moved
        record = await service.compute_period_payroll(employee.employee_id, WEEK)
        assert record.base_pay == Decimal("2194.50")

        move = await service.move_load(
            load.load_id, self.NEXT_WEEK + timedelta(days=3), moved_by="dispatch"
        )

        assert move.from_week == WEEK
        assert move.to_week == self.NEXT_WEEK
        assert load.pay_week_start == self.NEXT_WEEK
        assert move.recalculated == [record]
        assert record.total_loads == 2
        assert record.base_pay == Decimal("1662.50")

        following = await service.compute_period_payroll(employee.employee_id, self.NEXT_WEEK)
        assert following.total_loads == 1
        assert following.base_pay == Decimal("532.00")

    async def test_move_back_recalculates_both_weeks(self, service, moved):
        employee, load = moved
        await service.move_load(load.load_id, self.NEXT_WEEK)
        source = await service.compute_period_payroll(employee.employee_id, WEEK)
        target = await service.compute_period_payroll(employee.employee_id, self.NEXT_WEEK)

        move = await service.move_load(load.load_id, WEEK)

        assert move.from_week == self.NEXT_WEEK
        assert {r.payroll_id for r in move.recalculated} == {source.payroll_id, target.payroll_id}
        assert source.total_loads == 3
        assert target.total_loads == 0
        assert target.base_pay == 0

    async def test_locked_source_week(self, service, moved):
        employee, load = moved
        record = await service.compute_period_payroll(employee.employee_id, WEEK)
        await service.process_payroll(record.payroll_id)

        with pytest.raises(RecordLockedError):
            await service.move_load(load.load_id, self.NEXT_WEEK)

        assert load.pay_week_start is None
        assert record.total_loads == 3

    async def test_locked_target_week(self, service, make_employee, make_load, moved):
        _, load = moved
        other = await make_employee(name="Dale Carter")
        await make_load(other, "L-2001", Decimal("900"), delivery_date=self.NEXT_WEEK)
        locked = await service.compute_period_payroll(other.employee_id, self.NEXT_WEEK)
        await service.process_payroll(locked.payroll_id)

        with pytest.raises(RecordLockedError):
            await service.move_load(load.load_id, self.NEXT_WEEK)

        assert load.pay_week_start is None

    async def test_same_week_rejected(self, service, moved):
        _, load = moved

        with pytest.raises(ValidationError) as exc_info:
            await service.move_load(load.load_id, WEEK + timedelta(days=4))

        assert exc_info.value.field == "target_week_start"

    async def test_unknown_load(self, service):
        with pytest.raises(NotFoundError):
            await service.move_load(uuid4(), self.NEXT_WEEK)
