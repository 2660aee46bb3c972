"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from driver_payroll.calculators.types import AdvanceStatus


class ErrorResponse(BaseModel):
    """Error response schema."""

    detail: str
    code: str


# ============================================================================
# Payroll records
# ============================================================================


class ComputePayrollRequest(BaseModel):
    employee_id: UUID
    week_start: date
    week_end: date | None = None
    recalculate: bool = False


class PayrollResponse(BaseModel):
    """Individual payroll record."""

    model_config = ConfigDict(from_attributes=True)

    payroll_id: UUID
    employee_id: UUID
    week_start_date: date
    week_end_date: date
    pay_date: date
    payment_method: str | None = None
    status: str
    is_locked: bool

    total_loads: int
    total_miles: Decimal
    gross_revenue: Decimal
    service_fee: Decimal
    company_share: Decimal

    base_pay: Decimal
    bonus_amount: Decimal
    overtime: Decimal
    other_earnings: Decimal
    reimbursements: Decimal
    gross_pay: Decimal

    fuel_deductions: Decimal
    advance_repayments: Decimal
    recurring_fees: Decimal
    escrow_deposits: Decimal
    other_deductions: Decimal
    total_deductions: Decimal

    net_pay: Decimal
    escrow_suggestion: Decimal | None = None
    inputs_fingerprint: str | None = None
    calculation_id: UUID | None = None
    calculated_at: datetime | None = None
    reviewed_at: datetime | None = None
    processed_at: datetime | None = None
    paid_at: datetime | None = None


class PayrollLoadResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    load_id: UUID
    load_number: str
    gross_amount: Decimal
    miles: Decimal
    mileage_method: str | None = None
    service_fee: Decimal
    driver_share: Decimal
    company_share: Decimal


class PayrollDetailResponse(PayrollResponse):
    loads: list[PayrollLoadResponse] = Field(default_factory=list)
    adjustment_ids: list[UUID] = Field(default_factory=list)


class ReviewRequest(BaseModel):
    reviewed_by: str | None = None


class ProcessRequest(BaseModel):
    processed_by: str | None = None


class UnlockRequest(BaseModel):
    reason: str | None = None


class WeekLockRequest(BaseModel):
    locked: bool


class WeekLockResponse(BaseModel):
    week_start: date
    locked: bool
    updated: int


class LoadMoveRequest(BaseModel):
    target_week_start: date = Field(..., description="Any date in the week to pay the load in")
    moved_by: str | None = None
    reason: str | None = None


class LoadMoveResponse(BaseModel):
    load_id: UUID
    load_number: str
    from_week: date | None
    to_week: date
    recalculated: list[PayrollResponse]


class PaystubResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    paystub_id: UUID
    payroll_id: UUID
    employee_id: UUID
    employee_name: str
    week_start_date: date
    week_end_date: date
    pay_date: date
    status: str
    total_loads: int
    total_miles: Decimal
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    escrow_deposits: Decimal
    advance_repayments: Decimal
    generated_at: datetime
    regenerated_count: int


# ============================================================================
# Batch
# ============================================================================


class BatchRequest(BaseModel):
    week_start: date
    week_end: date | None = None
    employee_ids: list[UUID] | None = None
    skip_without_loads: bool = False


class BatchRowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: UUID
    employee_name: str
    status: str
    payroll_id: UUID | None = None
    gross_pay: Decimal
    net_pay: Decimal
    total_deductions: Decimal
    reimbursements: Decimal
    total_loads: int
    message: str | None = None
    load_number: str | None = None


class BatchTotalsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_count: int
    success_count: int
    error_count: int
    skipped_count: int
    gross_pay: Decimal
    net_pay: Decimal
    total_deductions: Decimal
    reimbursements: Decimal
    total_loads: int


class BatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    week_start: date
    week_end: date
    results: list[BatchRowResponse]
    totals: BatchTotalsResponse


# ============================================================================
# Ledgers
# ============================================================================


class AdvanceCreate(BaseModel):
    employee_id: UUID
    amount: Decimal = Field(gt=0)
    weeks_to_repay: int = Field(ge=1)
    advance_date: date | None = None
    description: str | None = None
    created_by: str | None = None


class AdvanceEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entry_id: UUID
    employee_id: UUID
    entry_type: str
    advance_key: str
    parent_entry_id: UUID | None = None
    sequence: int | None = None
    amount: Decimal
    weeks_to_repay: int | None = None
    weekly_repayment: Decimal | None = None
    first_repayment_date: date | None = None
    last_repayment_date: date | None = None
    week_start_date: date
    status: str
    description: str | None = None


class AdvanceCreationResponse(BaseModel):
    advance: AdvanceEntryResponse
    repayment_schedule: list[AdvanceEntryResponse]


class AdvanceSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    advance_id: UUID
    advance_amount: Decimal
    total_repaid: Decimal
    total_forgiven: Decimal
    total_adjusted: Decimal
    remaining_balance: Decimal
    pending_repayments: int
    status: AdvanceStatus


class AdvanceForgiveRequest(BaseModel):
    reason: str | None = None
    created_by: str | None = None


class EscrowAccountCreate(BaseModel):
    employee_id: UUID
    target_amount: Decimal | None = Field(default=None, gt=0)
    weekly_amount: Decimal | None = Field(default=None, ge=0)
    target_weeks: int | None = Field(default=None, ge=1)
    max_weekly_deposit: Decimal | None = Field(default=None, gt=0)
    min_weekly_deposit: Decimal | None = Field(default=None, gt=0)
    suggest_deposits: bool = True


class EscrowWeeklyAmountUpdate(BaseModel):
    weekly_amount: Decimal | None = Field(default=None, ge=0)


class EscrowAccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    account_id: UUID
    employee_id: UUID
    current_balance: Decimal
    target_amount: Decimal
    weekly_amount: Decimal | None = None
    target_weeks: int
    max_weekly_deposit: Decimal
    min_weekly_deposit: Decimal
    suggest_deposits: bool
    is_active: bool
    is_funded: bool
    fully_funded_at: datetime | None = None
    last_deposit_date: date | None = None


class EscrowTransactionCreate(BaseModel):
    employee_id: UUID
    transaction_type: str
    amount: Decimal
    week_start_date: date | None = None
    transaction_date: date | None = None
    description: str | None = None
    created_by: str | None = None


class EscrowTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_id: UUID
    account_id: UUID
    employee_id: UUID
    sequence: int
    transaction_type: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    transaction_date: date
    week_start_date: date | None = None
    description: str | None = None
    reverses_transaction_id: UUID | None = None


class EscrowPostingResponse(BaseModel):
    transaction: EscrowTransactionResponse
    new_balance: Decimal


class ReverseRequest(BaseModel):
    reason: str | None = None
    effective_date: date | None = None
    created_by: str | None = None


class RecurringDeductionCreate(BaseModel):
    driver_id: UUID
    week_start: date
    recurring_type: str
    amount: Decimal
    description: str | None = None
    frequency: str = "WEEKLY"
    end_date: date | None = None


class RecurringDeductionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    deduction_id: UUID
    driver_id: UUID
    week_start: date
    recurring_type: str
    amount: Decimal
    description: str | None = None
    frequency: str
    is_active: bool
    next_deduction_date: date | None = None
    end_date: date | None = None


class AdjustmentCreate(BaseModel):
    employee_id: UUID
    category: str
    amount: Decimal
    effective_date: date
    adjustment_type: str | None = None
    description: str | None = None
    week_start_date: date | None = None
    load_number: str | None = None
    reference_number: str | None = None
    created_by: str | None = None


class AdjustmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    adjustment_id: UUID
    employee_id: UUID
    category: str
    adjustment_type: str
    description: str | None = None
    amount: Decimal
    effective_date: date
    week_start_date: date
    load_number: str | None = None
    reference_number: str | None = None
    status: str
    reverses_adjustment_id: UUID | None = None


class PaymentTermsChange(BaseModel):
    method: str
    effective_date: date
    driver_percent: Decimal = Decimal("0")
    company_percent: Decimal = Decimal("0")
    service_fee_percent: Decimal = Decimal("0")
    pay_per_mile_rate: Decimal = Decimal("0")
    notes: str | None = None


class PaymentConfigResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    config_id: UUID
    employee_id: UUID
    method: str
    driver_percent: Decimal
    company_percent: Decimal
    service_fee_percent: Decimal
    pay_per_mile_rate: Decimal
    effective_date: date
    end_date: date | None = None


# ============================================================================
# Mileage
# ============================================================================


class MileageResponse(BaseModel):
    from_zip: str | None = None
    to_zip: str | None = None
    miles: int
    method: str
