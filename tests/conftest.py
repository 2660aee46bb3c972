"""Pytest fixtures for driver payroll tests."""

from __future__ import annotations

import dataclasses
from datetime import date, timedelta
from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from driver_payroll.config import Settings, get_settings
from driver_payroll.database import create_session_factory, get_engine, init_models
from driver_payroll.models import Employee, FuelTransaction, Load, PaymentConfig

# A Monday; the week runs 2024-01-08 .. 2024-01-14
TEST_WEEK = date(2024, 1, 8)
TEST_WEEK_END = TEST_WEEK + timedelta(days=6)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Default settings pointed at a throwaway SQLite file."""
    return dataclasses.replace(
        get_settings(),
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'payroll.db'}",
        engine_version="test-1",
    )


@pytest.fixture
async def engine(settings: Settings):
    """Create test database engine.

    A file database lets the batch service open several sessions that see
    each other's commits.
    """
    engine = get_engine(settings.database_url)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_employee(session: AsyncSession):
    """Factory for an active employee with open payment terms."""

    async def _make(
        name: str = "Maria Lopez",
        method: str = "PERCENTAGE",
        driver_percent: Decimal = Decimal("70"),
        company_percent: Decimal = Decimal("30"),
        service_fee_percent: Decimal = Decimal("5"),
        pay_per_mile_rate: Decimal = Decimal("0"),
        status: str = "ACTIVE",
        effective_date: date = date(2023, 1, 2),
    ) -> Employee:
        employee = Employee(
            employee_id=uuid4(),
            name=name,
            email=f"{name.split()[0].lower()}@example.com",
            status=status,
            hire_date=effective_date,
        )
        session.add(employee)
        await session.flush()
        session.add(
            PaymentConfig(
                config_id=uuid4(),
                employee_id=employee.employee_id,
                method=method,
                driver_percent=driver_percent,
                company_percent=company_percent,
                service_fee_percent=service_fee_percent,
                pay_per_mile_rate=pay_per_mile_rate,
                effective_date=effective_date,
            )
        )
        await session.flush()
        return employee

    return _make


@pytest.fixture
def make_load(session: AsyncSession):
    """Factory for a load assigned to a driver."""

    async def _make(
        employee: Employee,
        load_number: str,
        gross_amount: Decimal,
        delivery_date: date = TEST_WEEK + timedelta(days=2),
        status: str = "DELIVERED",
        final_miles: Decimal | None = None,
        driver_rate: Decimal | None = None,
        origin_zip: str | None = None,
        destination_zip: str | None = None,
    ) -> Load:
        load = Load(
            load_id=uuid4(),
            load_number=load_number,
            driver_id=employee.employee_id,
            status=status,
            gross_amount=gross_amount,
            final_miles=final_miles,
            driver_rate=driver_rate,
            origin_zip=origin_zip,
            destination_zip=destination_zip,
            pickup_date=delivery_date - timedelta(days=1),
            delivery_date=delivery_date,
        )
        session.add(load)
        await session.flush()
        return load

    return _make


@pytest.fixture
def make_fuel(session: AsyncSession):
    """Factory for a fuel card purchase."""

    async def _make(
        employee: Employee | None,
        amount: Decimal,
        fees: Decimal = Decimal("0"),
        transaction_date: date = TEST_WEEK + timedelta(days=1),
        driver_name: str | None = None,
    ) -> FuelTransaction:
        fuel = FuelTransaction(
            fuel_transaction_id=uuid4(),
            driver_id=employee.employee_id if employee is not None else None,
            driver_name=driver_name,
            transaction_date=transaction_date,
            amount=amount,
            fees=fees,
            location="Pilot #412, Amarillo TX",
        )
        session.add(fuel)
        await session.flush()
        return fuel

    return _make


@pytest.fixture
async def percentage_driver(make_employee, make_load) -> Employee:
    """Driver on 70% with a 5% service fee and three delivered loads."""
    employee = await make_employee()
    await make_load(employee, "L-1001", Decimal("1000"))
    await make_load(employee, "L-1002", Decimal("1500"))
    await make_load(employee, "L-1003", Decimal("800"))
    return employee
