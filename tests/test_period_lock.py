"""Tests for the (employee, week) computation lock."""

import asyncio
from datetime import date
from uuid import uuid4

import pytest

from driver_payroll.database import employee_period_lock, period_lock_key
from driver_payroll.errors import ConflictError
from driver_payroll.services.payroll_service import PayrollRecordService

WEEK = date(2024, 1, 8)


class TestPeriodLock:
    def test_key_format(self):
        employee_id = uuid4()

        assert period_lock_key(employee_id, WEEK) == f"payroll:{employee_id}:2024-01-08"

    async def test_held_lock_rejects_compute(self, session, settings, percentage_driver):
        service = PayrollRecordService(session, settings=settings)
        employee_id = percentage_driver.employee_id

        async with employee_period_lock(session, employee_id, WEEK):
            with pytest.raises(ConflictError):
                await service.compute_period_payroll(employee_id, WEEK)
            assert await service.find_payroll(employee_id, WEEK) is None

        record = await service.compute_period_payroll(employee_id, WEEK)
        assert record.status == "CALCULATED"

    async def test_other_weeks_are_independent(self, session, settings, percentage_driver):
        service = PayrollRecordService(session, settings=settings)
        employee_id = percentage_driver.employee_id

        async with employee_period_lock(session, employee_id, WEEK):
            record = await service.compute_period_payroll(employee_id, date(2024, 1, 15))

        assert record.total_loads == 0

    async def test_lock_released_on_error(self, session, percentage_driver):
        employee_id = percentage_driver.employee_id

        with pytest.raises(RuntimeError):
            async with employee_period_lock(session, employee_id, WEEK):
                raise RuntimeError("boom")

        async with employee_period_lock(session, employee_id, WEEK) as key:
            assert key == period_lock_key(employee_id, WEEK)


class TestConcurrentCompute:
    async def test_same_period_computed_once(
        self, session, session_factory, settings, percentage_driver
    ):
        await session.commit()
        employee_id = percentage_driver.employee_id

        async def compute():
            async with session_factory() as worker_session:
                service = PayrollRecordService(worker_session, settings=settings)
                record = await service.compute_period_payroll(employee_id, WEEK)
                await worker_session.commit()
                return record.payroll_id

        results = await asyncio.gather(compute(), compute(), return_exceptions=True)

        conflicts = [r for r in results if isinstance(r, ConflictError)]
        payroll_ids = [r for r in results if not isinstance(r, BaseException)]
        assert len(conflicts) == 1
        assert len(payroll_ids) == 1

        async with session_factory() as check_session:
            service = PayrollRecordService(check_session, settings=settings)
            records = await service.list_for_week(WEEK)
        assert [r.payroll_id for r in records] == payroll_ids
