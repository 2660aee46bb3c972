"""Individual payroll record, its associations and the paystub snapshot."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from driver_payroll.models.base import Base, TimestampMixin, utcnow

ZERO = Decimal("0")

# Money fields shared by the payroll record and the paystub snapshot
PAYROLL_MONEY_FIELDS = (
    "gross_revenue",
    "service_fee",
    "company_share",
    "base_pay",
    "bonus_amount",
    "overtime",
    "other_earnings",
    "reimbursements",
    "gross_pay",
    "fuel_deductions",
    "advance_repayments",
    "recurring_fees",
    "escrow_deposits",
    "other_deductions",
    "total_deductions",
    "net_pay",
)


class IndividualPayroll(Base, TimestampMixin):
    """Computed payroll for one employee and one week."""

    __tablename__ = "individual_payroll"

    payroll_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    week_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    week_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Load totals
    total_loads: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_miles: Mapped[Decimal] = mapped_column(Numeric(12, 1), nullable=False, default=ZERO)
    gross_revenue: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    service_fee: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    company_share: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    # Earnings
    base_pay: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    bonus_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    overtime: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    other_earnings: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    reimbursements: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    gross_pay: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    # Deductions
    fuel_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    advance_repayments: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    recurring_fees: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    escrow_deposits: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    other_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    # May be negative; flooring is a disbursement concern
    net_pay: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    escrow_suggestion: Mapped[Decimal | None] = mapped_column()

    # Determinism
    inputs_fingerprint: Mapped[str | None] = mapped_column(String)
    calculation_id: Mapped[UUID | None] = mapped_column()
    engine_version: Mapped[str | None] = mapped_column(String)

    # Lifecycle audit
    calculated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reviewed_by: Mapped[str | None] = mapped_column(String)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    processed_by: Mapped[str | None] = mapped_column(String)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "employee_id", "week_start_date", name="individual_payroll_employee_week_unique"
        ),
        CheckConstraint(
            "status IN ('DRAFT', 'CALCULATED', 'REVIEWED', 'PROCESSED', 'PAID')",
            name="individual_payroll_status_check",
        ),
        CheckConstraint("week_end_date >= week_start_date", name="individual_payroll_week_check"),
    )


class PayrollLoad(Base):
    """A load included in a payroll record, with its computed split."""

    __tablename__ = "payroll_load"

    payroll_load_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_id: Mapped[UUID] = mapped_column(
        ForeignKey("individual_payroll.payroll_id", ondelete="CASCADE"),
        nullable=False,
    )
    load_id: Mapped[UUID] = mapped_column(
        ForeignKey("load.load_id", ondelete="RESTRICT"),
        nullable=False,
    )
    load_number: Mapped[str] = mapped_column(String, nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(nullable=False)
    miles: Mapped[Decimal] = mapped_column(Numeric(10, 1), nullable=False, default=ZERO)
    mileage_method: Mapped[str | None] = mapped_column(String)
    service_fee: Mapped[Decimal] = mapped_column(nullable=False)
    driver_share: Mapped[Decimal] = mapped_column(nullable=False)
    company_share: Mapped[Decimal] = mapped_column(nullable=False)

    __table_args__ = (
        UniqueConstraint("payroll_id", "load_id", name="payroll_load_unique"),
    )


class PayrollAdjustmentLink(Base):
    """An adjustment counted in a payroll record."""

    __tablename__ = "payroll_adjustment_link"

    link_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_id: Mapped[UUID] = mapped_column(
        ForeignKey("individual_payroll.payroll_id", ondelete="CASCADE"),
        nullable=False,
    )
    adjustment_id: Mapped[UUID] = mapped_column(
        ForeignKey("adjustment.adjustment_id", ondelete="RESTRICT"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("payroll_id", "adjustment_id", name="payroll_adjustment_link_unique"),
    )


class Paystub(Base, TimestampMixin):
    """Snapshot of a payroll record taken when it was processed.

    Recalculating the record never touches an existing paystub; only an
    explicit regeneration does.
    """

    __tablename__ = "paystub"

    paystub_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_id: Mapped[UUID] = mapped_column(
        ForeignKey("individual_payroll.payroll_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    employee_name: Mapped[str] = mapped_column(String, nullable=False)
    week_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    week_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="APPROVED")
    total_loads: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_miles: Mapped[Decimal] = mapped_column(Numeric(12, 1), nullable=False, default=ZERO)

    gross_revenue: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    service_fee: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    company_share: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    base_pay: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    bonus_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    overtime: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    other_earnings: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    reimbursements: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    gross_pay: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    fuel_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    advance_repayments: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    recurring_fees: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    escrow_deposits: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    other_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    net_pay: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    calculation_id: Mapped[UUID | None] = mapped_column()
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    regenerated_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
