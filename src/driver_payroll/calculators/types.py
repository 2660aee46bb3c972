"""Type definitions for the calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Union
from uuid import UUID

if TYPE_CHECKING:
    from driver_payroll.models import Load, PaymentConfig

ZERO = Decimal("0")


class PaymentMethod(str, Enum):
    """How a driver's share of a load is computed."""

    PERCENTAGE = "PERCENTAGE"
    PAY_PER_MILE = "PAY_PER_MILE"
    FLAT_RATE = "FLAT_RATE"


class EmployeeStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    TERMINATED = "TERMINATED"


# Load statuses that earn pay
COUNTED_LOAD_STATUSES = ("DELIVERED", "PAID")


class MileageMethod(str, Enum):
    """Provenance of a mileage figure."""

    CALCULATED = "CALCULATED"
    ESTIMATED = "ESTIMATED"
    RECORDED = "RECORDED"  # final_miles stored on the load


class AdjustmentCategory(str, Enum):
    DEDUCTION = "DEDUCTION"
    REIMBURSEMENT = "REIMBURSEMENT"
    BONUS = "BONUS"
    CORRECTION = "CORRECTION"


class AdjustmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    APPROVED = "APPROVED"
    REVERSED = "REVERSED"


class AdvanceEntryType(str, Enum):
    ADVANCE = "ADVANCE"
    REPAYMENT = "REPAYMENT"
    ADJUSTMENT = "ADJUSTMENT"
    FORGIVENESS = "FORGIVENESS"


class AdvanceStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    DEFAULTED = "DEFAULTED"
    FORGIVEN = "FORGIVEN"
    CANCELLED = "CANCELLED"


class EscrowTransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    ADJUSTMENT = "ADJUSTMENT"
    INTEREST = "INTEREST"


class RecurringType(str, Enum):
    ELD = "ELD"
    IFTA = "IFTA"
    TVC = "TVC"
    PARKING = "PARKING"
    PRE_PASS = "PRE-PASS"
    OTHER = "OTHER"


class RecurringFrequency(str, Enum):
    WEEKLY = "WEEKLY"
    BI_WEEKLY = "BI_WEEKLY"
    MONTHLY = "MONTHLY"


# ===== Load earnings =====


@dataclass(frozen=True)
class PaymentTerms:
    """Pay terms in effect for a period."""

    method: PaymentMethod
    driver_percent: Decimal = ZERO
    company_percent: Decimal = ZERO
    service_fee_percent: Decimal = ZERO
    pay_per_mile_rate: Decimal = ZERO
    config_id: UUID | None = None

    @classmethod
    def from_config(cls, config: PaymentConfig) -> PaymentTerms:
        return cls(
            method=PaymentMethod(config.method),
            driver_percent=config.driver_percent or ZERO,
            company_percent=config.company_percent or ZERO,
            service_fee_percent=config.service_fee_percent or ZERO,
            pay_per_mile_rate=config.pay_per_mile_rate or ZERO,
            config_id=config.config_id,
        )

    def to_canonical_dict(self) -> dict[str, Any]:
        return {
            "method": self.method.value,
            "driver_percent": canonical_decimal(self.driver_percent),
            "company_percent": canonical_decimal(self.company_percent),
            "service_fee_percent": canonical_decimal(self.service_fee_percent),
            "pay_per_mile_rate": canonical_decimal(self.pay_per_mile_rate),
        }


@dataclass(frozen=True)
class LoadInput:
    """The load fields the earnings calculator needs."""

    load_number: str
    gross_amount: Decimal
    final_miles: Decimal | None = None
    driver_rate: Decimal | None = None
    load_id: UUID | None = None
    mileage_method: MileageMethod = MileageMethod.RECORDED

    @classmethod
    def from_model(cls, load: Load) -> LoadInput:
        return cls(
            load_number=load.load_number,
            gross_amount=load.gross_amount,
            final_miles=load.final_miles,
            driver_rate=load.driver_rate,
            load_id=load.load_id,
        )

    def to_canonical_dict(self) -> dict[str, Any]:
        return {
            "load_number": self.load_number,
            "gross_amount": canonical_decimal(self.gross_amount),
            "final_miles": canonical_decimal(self.final_miles),
            "driver_rate": canonical_decimal(self.driver_rate),
        }


@dataclass(frozen=True)
class LoadEarning:
    """Unrounded split of one load."""

    load_number: str
    gross_amount: Decimal
    miles: Decimal
    service_fee: Decimal
    driver_share: Decimal
    company_share: Decimal
    load_id: UUID | None = None
    mileage_method: MileageMethod = MileageMethod.RECORDED


@dataclass
class LoadEarningsResult:
    """Per-load earnings plus period aggregates."""

    per_load: list[LoadEarning] = field(default_factory=list)
    base_pay: Decimal = ZERO
    service_fee: Decimal = ZERO
    company_share: Decimal = ZERO
    total_miles: Decimal = ZERO
    gross_revenue: Decimal = ZERO

    @property
    def load_count(self) -> int:
        return len(self.per_load)


# ===== Adjustments =====
# Each category resolves to exactly one of these variants.


@dataclass(frozen=True)
class DeductionAdjustment:
    adjustment_id: UUID | None
    amount: Decimal
    deduction_type: str = "OTHER"

    @property
    def is_fuel(self) -> bool:
        return self.deduction_type == "FUEL"

    @property
    def is_advance_repayment(self) -> bool:
        return self.deduction_type == "ADVANCE_REPAY"


@dataclass(frozen=True)
class ReimbursementAdjustment:
    adjustment_id: UUID | None
    amount: Decimal
    reimbursement_type: str = "OTHER"


@dataclass(frozen=True)
class BonusAdjustment:
    adjustment_id: UUID | None
    amount: Decimal


@dataclass(frozen=True)
class CorrectionAdjustment:
    adjustment_id: UUID | None
    amount: Decimal
    is_overtime: bool = False


AdjustmentVariant = Union[
    DeductionAdjustment,
    ReimbursementAdjustment,
    BonusAdjustment,
    CorrectionAdjustment,
]


@dataclass
class AdjustmentTotals:
    """Adjustment amounts split into payroll buckets."""

    bonus_amount: Decimal = ZERO
    reimbursements: Decimal = ZERO
    overtime: Decimal = ZERO
    other_earnings: Decimal = ZERO
    fuel_deductions: Decimal = ZERO
    advance_repayments: Decimal = ZERO
    other_deductions: Decimal = ZERO


# ===== Advances =====


@dataclass(frozen=True)
class RepaymentInstallment:
    sequence: int
    week_start_date: date
    amount: Decimal


@dataclass(frozen=True)
class RepaymentSchedule:
    """Deterministic amortization of an advance."""

    advance_amount: Decimal
    weeks_to_repay: int
    weekly_repayment: Decimal
    installments: tuple[RepaymentInstallment, ...]

    @property
    def first_repayment_date(self) -> date:
        return self.installments[0].week_start_date

    @property
    def last_repayment_date(self) -> date:
        return self.installments[-1].week_start_date

    @property
    def total(self) -> Decimal:
        return sum((i.amount for i in self.installments), ZERO)


@dataclass(frozen=True)
class AdvanceLedgerLine:
    """Storage-independent view of one advance ledger row."""

    entry_id: UUID
    entry_type: AdvanceEntryType
    amount: Decimal
    status: AdvanceStatus
    parent_entry_id: UUID | None = None
    week_start_date: date | None = None


@dataclass(frozen=True)
class AdvanceSummary:
    advance_id: UUID
    advance_amount: Decimal
    total_repaid: Decimal
    total_forgiven: Decimal
    total_adjusted: Decimal
    remaining_balance: Decimal
    pending_repayments: int
    status: AdvanceStatus


# ===== Escrow =====


class DepositPolicyKind(str, Enum):
    MANUAL = "MANUAL"
    AUTO_SUGGESTED = "AUTO_SUGGESTED"
    NONE = "NONE"


@dataclass(frozen=True)
class DepositPolicy:
    """How the weekly escrow deposit is decided for an account."""

    kind: DepositPolicyKind
    amount: Decimal | None = None

    @classmethod
    def manual(cls, amount: Decimal) -> DepositPolicy:
        return cls(DepositPolicyKind.MANUAL, amount)

    @classmethod
    def auto_suggested(cls) -> DepositPolicy:
        return cls(DepositPolicyKind.AUTO_SUGGESTED)

    @classmethod
    def none(cls) -> DepositPolicy:
        return cls(DepositPolicyKind.NONE)


@dataclass(frozen=True)
class EscrowParameters:
    target_amount: Decimal
    current_balance: Decimal
    target_weeks: int = 6
    max_weekly_deposit: Decimal = Decimal("500")
    min_weekly_deposit: Decimal = Decimal("50")
    min_net_pay: Decimal = Decimal("500")


@dataclass(frozen=True)
class EscrowSuggestion:
    remaining: Decimal
    weekly_target: Decimal
    affordable: Decimal
    suggested: Decimal
    surfaced: bool


def canonical_decimal(value: Decimal | None) -> str | None:
    """Scale-independent string form used for fingerprints."""
    if value is None:
        return None
    return format(Decimal(value).normalize(), "f")
