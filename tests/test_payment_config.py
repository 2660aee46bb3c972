"""Tests for effective-dated payment configuration."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from driver_payroll.errors import CalculationError, NotFoundError, ValidationError
from driver_payroll.services.payment_config_service import PaymentConfigService


@pytest.fixture
def configs(session) -> PaymentConfigService:
    return PaymentConfigService(session)


class TestPaymentConfigService:
    """Test config resolution and term changes."""

    async def test_resolve_open_config(self, configs, make_employee):
        employee = await make_employee()

        config = await configs.resolve(employee.employee_id, date(2024, 1, 14))

        assert config.method == "PERCENTAGE"
        assert config.driver_percent == Decimal("70")

    async def test_resolve_before_first_config(self, configs, make_employee):
        employee = await make_employee(effective_date=date(2024, 1, 1))

        with pytest.raises(CalculationError) as exc_info:
            await configs.resolve(employee.employee_id, date(2023, 12, 31))

        assert exc_info.value.employee_id == employee.employee_id

    async def test_change_terms_closes_previous(self, configs, make_employee):
        employee = await make_employee()

        new = await configs.change_terms(
            employee.employee_id,
            "PAY_PER_MILE",
            date(2024, 1, 15),
            pay_per_mile_rate=Decimal("0.65"),
            service_fee_percent=Decimal("5"),
        )

        history = await configs.history(employee.employee_id)
        assert len(history) == 2
        assert history[0].end_date == date(2024, 1, 14)
        assert history[1] is new
        assert new.end_date is None

        # The week before the change still resolves to the old terms
        old = await configs.resolve(employee.employee_id, date(2024, 1, 14))
        assert old.method == "PERCENTAGE"
        current = await configs.resolve(employee.employee_id, date(2024, 1, 21))
        assert current.method == "PAY_PER_MILE"
        assert await configs.current(employee.employee_id) is new

    async def test_change_must_follow_open_config(self, configs, make_employee):
        employee = await make_employee(effective_date=date(2024, 1, 1))

        with pytest.raises(ValidationError) as exc_info:
            await configs.change_terms(
                employee.employee_id, "PERCENTAGE", date(2024, 1, 1), driver_percent=Decimal("75")
            )

        assert exc_info.value.field == "effective_date"

    @pytest.mark.parametrize(
        "method,values,field",
        [
            ("PERCENTAGE", {"driver_percent": Decimal("0")}, "driver_percent"),
            ("PERCENTAGE", {"driver_percent": Decimal("101")}, "driver_percent"),
            ("PAY_PER_MILE", {"pay_per_mile_rate": Decimal("0")}, "pay_per_mile_rate"),
            ("HOURLY", {}, "method"),
        ],
    )
    async def test_change_terms_validation(self, configs, make_employee, method, values, field):
        employee = await make_employee()

        with pytest.raises(ValidationError) as exc_info:
            await configs.change_terms(employee.employee_id, method, date(2024, 2, 5), **values)

        assert exc_info.value.field == field

    async def test_unknown_employee(self, configs):
        with pytest.raises(NotFoundError):
            await configs.change_terms(uuid4(), "FLAT_RATE", date(2024, 2, 5))
