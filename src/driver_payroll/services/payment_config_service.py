"""Versioned pay terms: effective-dated lookup and term changes."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from driver_payroll.calculators.types import ZERO, PaymentMethod
from driver_payroll.errors import CalculationError, NotFoundError, ValidationError
from driver_payroll.models import Employee, PaymentConfig

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class PaymentConfigService:
    """Resolves and changes an employee's payment configuration.

    Config selection: effective_date <= reference date and end_date is
    NULL or >= reference date; latest effective_date wins.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve(self, employee_id: UUID, reference_date: date) -> PaymentConfig:
        """Return the config authoritative on reference_date."""
        result = await self.session.execute(
            select(PaymentConfig)
            .where(PaymentConfig.employee_id == employee_id)
            .where(PaymentConfig.effective_date <= reference_date)
            .where(
                or_(
                    PaymentConfig.end_date.is_(None),
                    PaymentConfig.end_date >= reference_date,
                )
            )
            .order_by(PaymentConfig.effective_date.desc())
            .limit(1)
        )
        config = result.scalar_one_or_none()
        if config is None:
            raise CalculationError(
                f"No payment configuration for employee {employee_id} on {reference_date}",
                employee_id=employee_id,
            )
        return config

    async def current(self, employee_id: UUID) -> PaymentConfig | None:
        """The open (end_date IS NULL) config, if any."""
        result = await self.session.execute(
            select(PaymentConfig)
            .where(PaymentConfig.employee_id == employee_id)
            .where(PaymentConfig.end_date.is_(None))
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def history(self, employee_id: UUID) -> list[PaymentConfig]:
        result = await self.session.execute(
            select(PaymentConfig)
            .where(PaymentConfig.employee_id == employee_id)
            .order_by(PaymentConfig.effective_date)
        )
        return list(result.scalars().all())

    async def change_terms(
        self,
        employee_id: UUID,
        method: str | PaymentMethod,
        effective_date: date,
        driver_percent: Decimal = ZERO,
        company_percent: Decimal = ZERO,
        service_fee_percent: Decimal = ZERO,
        pay_per_mile_rate: Decimal = ZERO,
        notes: str | None = None,
    ) -> PaymentConfig:
        """Close the open config the day before effective_date and open a new one."""
        if await self.session.get(Employee, employee_id) is None:
            raise NotFoundError("Employee", employee_id)

        try:
            method = PaymentMethod(method)
        except ValueError as exc:
            raise ValidationError(f"Unknown payment method {method!r}", field="method") from exc

        for name, value in (
            ("driver_percent", driver_percent),
            ("company_percent", company_percent),
            ("service_fee_percent", service_fee_percent),
        ):
            if value < 0 or value > HUNDRED:
                raise ValidationError(f"{name} must be between 0 and 100", field=name)
        if pay_per_mile_rate < 0:
            raise ValidationError("pay_per_mile_rate cannot be negative", field="pay_per_mile_rate")
        if method == PaymentMethod.PERCENTAGE and driver_percent <= 0:
            raise ValidationError("PERCENTAGE pay requires driver_percent", field="driver_percent")
        if method == PaymentMethod.PAY_PER_MILE and pay_per_mile_rate <= 0:
            raise ValidationError(
                "PAY_PER_MILE pay requires pay_per_mile_rate", field="pay_per_mile_rate"
            )

        open_config = await self.current(employee_id)
        if open_config is not None:
            if effective_date <= open_config.effective_date:
                raise ValidationError(
                    f"New terms must start after {open_config.effective_date}",
                    field="effective_date",
                )
            open_config.end_date = effective_date - timedelta(days=1)

        config = PaymentConfig(
            employee_id=employee_id,
            method=method.value,
            driver_percent=driver_percent,
            company_percent=company_percent,
            service_fee_percent=service_fee_percent,
            pay_per_mile_rate=pay_per_mile_rate,
            effective_date=effective_date,
            notes=notes,
        )
        self.session.add(config)
        await self.session.flush()
        logger.info(
            "Payment terms for employee %s changed to %s effective %s",
            employee_id,
            method.value,
            effective_date,
        )
        return config
