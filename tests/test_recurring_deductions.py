"""Tests for recurring weekly deductions."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from driver_payroll.errors import ConflictError, NotFoundError, ValidationError
from driver_payroll.services.recurring_deductions import RecurringDeductionSet

WEEK = date(2024, 1, 8)


@pytest.fixture
def deductions(session, settings) -> RecurringDeductionSet:
    return RecurringDeductionSet(session, settings)


class TestRecurringDeductions:
    """Test recurring deduction bookkeeping."""

    async def test_add_normalizes_week(self, deductions, make_employee):
        """Any date in the week is stored against its Monday."""
        employee = await make_employee()

        entry = await deductions.add(employee.employee_id, date(2024, 1, 10), "ELD", Decimal("45"))

        assert entry.week_start == WEEK
        assert entry.is_active is True
        assert entry.frequency == "WEEKLY"
        assert entry.next_deduction_date == date(2024, 1, 15)

    async def test_duplicate_active_entry_rejected(self, deductions, make_employee):
        employee = await make_employee()
        await deductions.add(employee.employee_id, WEEK, "ELD", Decimal("45"))

        with pytest.raises(ConflictError):
            await deductions.add(employee.employee_id, WEEK, "ELD", Decimal("50"))

    async def test_same_type_after_deactivation(self, deductions, make_employee):
        employee = await make_employee()
        entry = await deductions.add(employee.employee_id, WEEK, "ELD", Decimal("45"))
        await deductions.deactivate(entry.deduction_id)

        replacement = await deductions.add(employee.employee_id, WEEK, "ELD", Decimal("50"))

        assert await deductions.due_for_week(employee.employee_id, WEEK) == [replacement]

    @pytest.mark.parametrize("amount", ["0", "-1", "1000.01", "1500"])
    async def test_amount_bounds(self, deductions, make_employee, amount):
        employee = await make_employee()
        with pytest.raises(ValidationError):
            await deductions.add(employee.employee_id, WEEK, "IFTA", Decimal(amount))

    async def test_unknown_type_rejected(self, deductions, make_employee):
        employee = await make_employee()
        with pytest.raises(ValidationError) as exc_info:
            await deductions.add(employee.employee_id, WEEK, "INSURANCE", Decimal("20"))
        assert exc_info.value.field == "recurring_type"

    async def test_hyphenated_type_accepted(self, deductions, make_employee):
        employee = await make_employee()
        entry = await deductions.add(employee.employee_id, WEEK, "PRE-PASS", Decimal("12.50"))
        assert entry.recurring_type == "PRE-PASS"

    async def test_unknown_driver(self, deductions):
        with pytest.raises(NotFoundError):
            await deductions.add(uuid4(), WEEK, "ELD", Decimal("45"))

    async def test_total_for_week(self, deductions, make_employee):
        employee = await make_employee()
        await deductions.add(employee.employee_id, WEEK, "ELD", Decimal("45"))
        await deductions.add(employee.employee_id, WEEK, "PARKING", Decimal("30"))
        await deductions.add(employee.employee_id, date(2024, 1, 15), "TVC", Decimal("99"))

        assert await deductions.total_for_week(employee.employee_id, WEEK) == Decimal("75")

    async def test_schedule_next(self, deductions, make_employee):
        employee = await make_employee()
        entry = await deductions.add(employee.employee_id, WEEK, "ELD", Decimal("45"))

        follow_up = await deductions.schedule_next(entry.deduction_id)

        assert follow_up.week_start == date(2024, 1, 15)
        assert follow_up.amount == Decimal("45")
        assert follow_up.next_deduction_date == date(2024, 1, 22)

        # Scheduling again returns the existing follow-up
        assert await deductions.schedule_next(entry.deduction_id) is follow_up

    async def test_schedule_next_stops_at_end_date(self, deductions, make_employee):
        employee = await make_employee()
        entry = await deductions.add(
            employee.employee_id, WEEK, "ELD", Decimal("45"), end_date=date(2024, 1, 14)
        )

        assert await deductions.schedule_next(entry.deduction_id) is None

    async def test_schedule_next_from_inactive_rejected(self, deductions, make_employee):
        employee = await make_employee()
        entry = await deductions.add(employee.employee_id, WEEK, "ELD", Decimal("45"))
        await deductions.deactivate(entry.deduction_id)

        with pytest.raises(ValidationError):
            await deductions.schedule_next(entry.deduction_id)

    async def test_monthly_frequency(self, deductions, make_employee):
        employee = await make_employee()
        entry = await deductions.add(
            employee.employee_id, date(2024, 1, 29), "OTHER", Decimal("20"), frequency="MONTHLY"
        )

        follow_up = await deductions.schedule_next(entry.deduction_id)

        # One month after 2024-01-29 is 2024-02-29, a Thursday
        assert entry.next_deduction_date == date(2024, 2, 29)
        assert follow_up.week_start == date(2024, 2, 26)
