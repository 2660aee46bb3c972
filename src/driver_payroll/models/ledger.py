"""Ledger models: adjustments, advances, escrow and recurring deductions."""

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
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from driver_payroll.models.base import Base, TimestampMixin, utcnow


class Adjustment(Base, TimestampMixin):
    """Ad-hoc pay adjustment. Immutable once created; reversed by a counter entry."""

    __tablename__ = "adjustment"

    adjustment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    category: Mapped[str] = mapped_column(String, nullable=False)
    adjustment_type: Mapped[str] = mapped_column(String, nullable=False, default="OTHER")
    description: Mapped[str | None] = mapped_column(String)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    week_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    load_number: Mapped[str | None] = mapped_column(String)
    reference_number: Mapped[str | None] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, nullable=False, default="ACTIVE")
    reverses_adjustment_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("adjustment.adjustment_id"),
    )
    created_by: Mapped[str | None] = mapped_column(String)
    approved_by: Mapped[str | None] = mapped_column(String)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint("amount >= 0", name="adjustment_amount_nonnegative"),
        CheckConstraint(
            "category IN ('DEDUCTION', 'REIMBURSEMENT', 'BONUS', 'CORRECTION')",
            name="adjustment_category_check",
        ),
        CheckConstraint(
            "status IN ('ACTIVE', 'APPROVED', 'REVERSED')",
            name="adjustment_status_check",
        ),
        Index("ix_adjustment_employee_week", "employee_id", "week_start_date"),
    )


class AdvanceEntry(Base, TimestampMixin):
    """One row of the advance ledger.

    The ADVANCE row owns the loan; REPAYMENT, ADJUSTMENT and FORGIVENESS
    rows point at it through parent_entry_id and share its advance_key.
    """

    __tablename__ = "advance_entry"

    entry_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    entry_type: Mapped[str] = mapped_column(String, nullable=False)
    advance_key: Mapped[str] = mapped_column(String, nullable=False)
    parent_entry_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("advance_entry.entry_id", ondelete="CASCADE"),
    )
    sequence: Mapped[int | None] = mapped_column(Integer)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    weeks_to_repay: Mapped[int | None] = mapped_column(Integer)
    weekly_repayment: Mapped[Decimal | None] = mapped_column()
    first_repayment_date: Mapped[date | None] = mapped_column(Date)
    last_repayment_date: Mapped[date | None] = mapped_column(Date)
    week_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="ACTIVE")
    description: Mapped[str | None] = mapped_column(String)
    created_by: Mapped[str | None] = mapped_column(String)
    applied_payroll_id: Mapped[UUID | None] = mapped_column()

    __table_args__ = (
        CheckConstraint(
            "entry_type IN ('ADVANCE', 'REPAYMENT', 'ADJUSTMENT', 'FORGIVENESS')",
            name="advance_entry_type_check",
        ),
        CheckConstraint(
            "status IN ('ACTIVE', 'COMPLETED', 'DEFAULTED', 'FORGIVEN', 'CANCELLED')",
            name="advance_entry_status_check",
        ),
        CheckConstraint(
            "(entry_type = 'ADVANCE' AND parent_entry_id IS NULL) OR "
            "(entry_type != 'ADVANCE' AND parent_entry_id IS NOT NULL)",
            name="advance_entry_parent_check",
        ),
        Index("ix_advance_entry_employee_week", "employee_id", "week_start_date"),
        Index("ix_advance_entry_parent", "parent_entry_id"),
    )


class EscrowAccount(Base, TimestampMixin):
    """Escrow (security deposit) account, one per employee."""

    __tablename__ = "escrow_account"

    account_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    current_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    target_amount: Mapped[Decimal] = mapped_column(nullable=False)
    # Manual weekly override; NULL means no override
    weekly_amount: Mapped[Decimal | None] = mapped_column()
    target_weeks: Mapped[int] = mapped_column(Integer, nullable=False, default=6)
    max_weekly_deposit: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("500"))
    min_weekly_deposit: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("50"))
    suggest_deposits: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_funded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    fully_funded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_deposit_date: Mapped[date | None] = mapped_column(Date)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("current_balance >= 0", name="escrow_account_balance_nonnegative"),
    )


class EscrowTransaction(Base, TimestampMixin):
    """Immutable escrow movement with a balance snapshot."""

    __tablename__ = "escrow_transaction"

    transaction_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    account_id: Mapped[UUID] = mapped_column(
        ForeignKey("escrow_account.account_id", ondelete="RESTRICT"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    # Per-account posting order
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    week_start_date: Mapped[date | None] = mapped_column(Date)
    description: Mapped[str | None] = mapped_column(String)
    paystub_id: Mapped[UUID | None] = mapped_column()
    reverses_transaction_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("escrow_transaction.transaction_id"),
    )
    created_by: Mapped[str | None] = mapped_column(String)

    __table_args__ = (
        CheckConstraint(
            "transaction_type IN ('DEPOSIT', 'WITHDRAWAL', 'ADJUSTMENT', 'INTEREST')",
            name="escrow_transaction_type_check",
        ),
        CheckConstraint("balance_after >= 0", name="escrow_transaction_balance_nonnegative"),
        UniqueConstraint("account_id", "sequence", name="escrow_transaction_sequence_unique"),
    )


class RecurringDeduction(Base, TimestampMixin):
    """Fixed periodic fee (ELD, IFTA, parking, ...) charged for a week."""

    __tablename__ = "recurring_deduction"

    deduction_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    driver_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    recurring_type: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    description: Mapped[str | None] = mapped_column(String)
    frequency: Mapped[str] = mapped_column(String, nullable=False, default="WEEKLY")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    next_deduction_date: Mapped[date | None] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)

    __table_args__ = (
        CheckConstraint("amount > 0", name="recurring_deduction_amount_positive"),
        Index(
            "uq_recurring_deduction_active",
            "driver_id",
            "recurring_type",
            "week_start",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )
