"""Employee and versioned payment configuration models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from driver_payroll.models.base import Base, Rate, TimestampMixin


class Employee(Base, TimestampMixin):
    """A driver on the company payroll."""

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str | None] = mapped_column(String)
    truck_unit: Mapped[str | None] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, nullable=False, default="ACTIVE")
    hire_date: Mapped[date | None] = mapped_column(Date)

    __table_args__ = (
        CheckConstraint(
            "status IN ('ACTIVE', 'INACTIVE', 'TERMINATED')",
            name="employee_status_check",
        ),
    )

    payment_configs: Mapped[list[PaymentConfig]] = relationship(
        back_populates="employee",
        order_by="PaymentConfig.effective_date",
    )


class PaymentConfig(Base, TimestampMixin):
    """Effective-dated pay terms for one employee.

    Exactly one row per employee has end_date NULL (the open config).
    """

    __tablename__ = "payment_config"

    config_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    method: Mapped[str] = mapped_column(String, nullable=False)
    driver_percent: Mapped[Decimal] = mapped_column(Rate, nullable=False, default=Decimal("0"))
    company_percent: Mapped[Decimal] = mapped_column(Rate, nullable=False, default=Decimal("0"))
    service_fee_percent: Mapped[Decimal] = mapped_column(
        Rate, nullable=False, default=Decimal("0")
    )
    pay_per_mile_rate: Mapped[Decimal] = mapped_column(
        Rate, nullable=False, default=Decimal("0")
    )
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(String)

    __table_args__ = (
        CheckConstraint(
            "method IN ('PERCENTAGE', 'PAY_PER_MILE', 'FLAT_RATE')",
            name="payment_config_method_check",
        ),
        CheckConstraint(
            "end_date IS NULL OR end_date >= effective_date",
            name="payment_config_dates_check",
        ),
        Index("ix_payment_config_employee_effective", "employee_id", "effective_date"),
    )

    employee: Mapped[Employee] = relationship(back_populates="payment_configs")
