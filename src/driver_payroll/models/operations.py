"""Operational records read by the engine: loads and fuel purchases."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Date, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from driver_payroll.models.base import Base, TimestampMixin


class Load(Base, TimestampMixin):
    """A dispatched load.

    Read-only to the payroll engine except for pay_week_start, which is set
    when a load is moved to a payroll week other than its delivery week.
    """

    __tablename__ = "load"

    load_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    load_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    driver_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="SET NULL"),
    )
    status: Mapped[str] = mapped_column(String, nullable=False, default="BOOKED")
    gross_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    final_miles: Mapped[Decimal | None] = mapped_column(Numeric(10, 1))
    # Per-load driver pay for FLAT_RATE drivers, set at assignment time
    driver_rate: Mapped[Decimal | None] = mapped_column()
    origin_zip: Mapped[str | None] = mapped_column(String)
    destination_zip: Mapped[str | None] = mapped_column(String)
    pickup_date: Mapped[date | None] = mapped_column(Date)
    delivery_date: Mapped[date | None] = mapped_column(Date)
    pay_week_start: Mapped[date | None] = mapped_column(Date)

    __table_args__ = (
        Index("ix_load_driver_delivery", "driver_id", "delivery_date"),
    )


class FuelTransaction(Base, TimestampMixin):
    """A fuel card purchase.

    Older imports carry only the driver's name; the aggregator matches
    those by name when driver_id is empty.
    """

    __tablename__ = "fuel_transaction"

    fuel_transaction_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    driver_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="SET NULL"),
    )
    driver_name: Mapped[str | None] = mapped_column(String)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    fees: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    location: Mapped[str | None] = mapped_column(String)

    __table_args__ = (
        Index("ix_fuel_transaction_driver_date", "driver_id", "transaction_date"),
    )
