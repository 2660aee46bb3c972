"""Ledger endpoints: advances, escrow, recurring deductions, adjustments and payment terms."""

from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Path, status

from driver_payroll.api.dependencies import DbSession
from driver_payroll.api.schemas import (
    AdjustmentCreate,
    AdjustmentResponse,
    AdvanceCreate,
    AdvanceCreationResponse,
    AdvanceEntryResponse,
    AdvanceForgiveRequest,
    AdvanceSummaryResponse,
    ErrorResponse,
    EscrowAccountCreate,
    EscrowAccountResponse,
    EscrowPostingResponse,
    EscrowTransactionCreate,
    EscrowTransactionResponse,
    EscrowWeeklyAmountUpdate,
    PaymentConfigResponse,
    PaymentTermsChange,
    RecurringDeductionCreate,
    RecurringDeductionResponse,
    ReverseRequest,
)
from driver_payroll.services.adjustments import AdjustmentSet
from driver_payroll.services.advance_ledger import AdvanceLedger
from driver_payroll.services.escrow_ledger import EscrowLedger, EscrowPosting
from driver_payroll.services.payment_config_service import PaymentConfigService
from driver_payroll.services.recurring_deductions import RecurringDeductionSet

router = APIRouter(tags=["ledgers"])


def _posting_response(posting: EscrowPosting) -> EscrowPostingResponse:
    return EscrowPostingResponse(
        transaction=EscrowTransactionResponse.model_validate(posting.transaction),
        new_balance=posting.new_balance,
    )


# ============================================================================
# Advances
# ============================================================================


@router.post(
    "/advances",
    response_model=AdvanceCreationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
async def create_advance(db: DbSession, payload: AdvanceCreate) -> AdvanceCreationResponse:
    """Issue an advance together with its weekly repayment schedule."""
    ledger = AdvanceLedger(db)
    creation = await ledger.create_advance(
        payload.employee_id,
        payload.amount,
        payload.weeks_to_repay,
        advance_date=payload.advance_date,
        description=payload.description,
        created_by=payload.created_by,
    )
    await db.commit()
    return AdvanceCreationResponse(
        advance=AdvanceEntryResponse.model_validate(creation.advance),
        repayment_schedule=[
            AdvanceEntryResponse.model_validate(e) for e in creation.repayment_schedule
        ],
    )


@router.get("/employees/{employee_id}/advances", response_model=list[AdvanceSummaryResponse])
async def list_advances(
    db: DbSession,
    employee_id: Annotated[UUID, Path()],
) -> list[AdvanceSummaryResponse]:
    summaries = await AdvanceLedger(db).summarize(employee_id)
    return [AdvanceSummaryResponse.model_validate(s) for s in summaries]


@router.post(
    "/advances/{advance_id}/forgive",
    response_model=AdvanceEntryResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def forgive_advance(
    db: DbSession,
    advance_id: Annotated[UUID, Path()],
    payload: AdvanceForgiveRequest,
) -> AdvanceEntryResponse:
    entry = await AdvanceLedger(db).forgive_advance(
        advance_id, reason=payload.reason, created_by=payload.created_by
    )
    await db.commit()
    return AdvanceEntryResponse.model_validate(entry)


@router.post(
    "/advances/{advance_id}/cancel",
    response_model=AdvanceEntryResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def cancel_advance(
    db: DbSession,
    advance_id: Annotated[UUID, Path()],
) -> AdvanceEntryResponse:
    entry = await AdvanceLedger(db).cancel_advance(advance_id)
    await db.commit()
    return AdvanceEntryResponse.model_validate(entry)


# ============================================================================
# Escrow
# ============================================================================


@router.post(
    "/escrow/accounts",
    response_model=EscrowAccountResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
)
async def open_escrow_account(
    db: DbSession, payload: EscrowAccountCreate
) -> EscrowAccountResponse:
    account = await EscrowLedger(db).open_account(
        payload.employee_id,
        target_amount=payload.target_amount,
        weekly_amount=payload.weekly_amount,
        target_weeks=payload.target_weeks,
        max_weekly_deposit=payload.max_weekly_deposit,
        min_weekly_deposit=payload.min_weekly_deposit,
        suggest_deposits=payload.suggest_deposits,
    )
    await db.commit()
    return EscrowAccountResponse.model_validate(account)


@router.get(
    "/escrow/accounts/{employee_id}",
    response_model=EscrowAccountResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_escrow_account(
    db: DbSession,
    employee_id: Annotated[UUID, Path()],
) -> EscrowAccountResponse:
    account = await EscrowLedger(db).require_account(employee_id)
    return EscrowAccountResponse.model_validate(account)


@router.patch(
    "/escrow/accounts/{employee_id}",
    response_model=EscrowAccountResponse,
    responses={404: {"model": ErrorResponse}},
)
async def set_escrow_weekly_amount(
    db: DbSession,
    employee_id: Annotated[UUID, Path()],
    payload: EscrowWeeklyAmountUpdate,
) -> EscrowAccountResponse:
    """Set or clear the manual weekly deposit override."""
    account = await EscrowLedger(db).set_weekly_amount(employee_id, payload.weekly_amount)
    await db.commit()
    return EscrowAccountResponse.model_validate(account)


@router.get(
    "/escrow/accounts/{employee_id}/transactions",
    response_model=list[EscrowTransactionResponse],
)
async def list_escrow_transactions(
    db: DbSession,
    employee_id: Annotated[UUID, Path()],
) -> list[EscrowTransactionResponse]:
    transactions = await EscrowLedger(db).transactions(employee_id)
    return [EscrowTransactionResponse.model_validate(t) for t in transactions]


@router.get("/escrow/accounts/{employee_id}/statistics")
async def escrow_statistics(
    db: DbSession,
    employee_id: Annotated[UUID, Path()],
) -> dict[str, Any]:
    return await EscrowLedger(db).statistics(employee_id)


@router.post(
    "/escrow/transactions",
    response_model=EscrowPostingResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def post_escrow_transaction(
    db: DbSession, payload: EscrowTransactionCreate
) -> EscrowPostingResponse:
    """Post a deposit, withdrawal, interest or adjustment.

    A transaction that would take the balance below zero is rejected.
    """
    posting = await EscrowLedger(db).post_transaction(
        payload.employee_id,
        payload.transaction_type,
        payload.amount,
        week_start_date=payload.week_start_date,
        transaction_date=payload.transaction_date,
        description=payload.description,
        created_by=payload.created_by,
    )
    await db.commit()
    return _posting_response(posting)


@router.post(
    "/escrow/transactions/{transaction_id}/reverse",
    response_model=EscrowPostingResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def reverse_escrow_transaction(
    db: DbSession,
    transaction_id: Annotated[UUID, Path()],
    payload: ReverseRequest,
) -> EscrowPostingResponse:
    posting = await EscrowLedger(db).reverse_transaction(
        transaction_id, reason=payload.reason, created_by=payload.created_by
    )
    await db.commit()
    return _posting_response(posting)


# ============================================================================
# Recurring deductions
# ============================================================================


@router.post(
    "/recurring-deductions",
    response_model=RecurringDeductionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def add_recurring_deduction(
    db: DbSession, payload: RecurringDeductionCreate
) -> RecurringDeductionResponse:
    entry = await RecurringDeductionSet(db).add(
        payload.driver_id,
        payload.week_start,
        payload.recurring_type,
        payload.amount,
        description=payload.description,
        frequency=payload.frequency,
        end_date=payload.end_date,
    )
    await db.commit()
    return RecurringDeductionResponse.model_validate(entry)


@router.post(
    "/recurring-deductions/{deduction_id}/deactivate",
    response_model=RecurringDeductionResponse,
    responses={404: {"model": ErrorResponse}},
)
async def deactivate_recurring_deduction(
    db: DbSession,
    deduction_id: Annotated[UUID, Path()],
) -> RecurringDeductionResponse:
    entry = await RecurringDeductionSet(db).deactivate(deduction_id)
    await db.commit()
    return RecurringDeductionResponse.model_validate(entry)


@router.post(
    "/recurring-deductions/{deduction_id}/schedule-next",
    response_model=RecurringDeductionResponse | None,
    responses={404: {"model": ErrorResponse}},
)
async def schedule_next_deduction(
    db: DbSession,
    deduction_id: Annotated[UUID, Path()],
) -> RecurringDeductionResponse | None:
    """Create the following occurrence; null once the end date has passed."""
    entry = await RecurringDeductionSet(db).schedule_next(deduction_id)
    await db.commit()
    return RecurringDeductionResponse.model_validate(entry) if entry is not None else None


# ============================================================================
# Adjustments
# ============================================================================


@router.post(
    "/adjustments",
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def create_adjustment(db: DbSession, payload: AdjustmentCreate) -> AdjustmentResponse:
    adjustment = await AdjustmentSet(db).create(
        payload.employee_id,
        payload.category,
        payload.amount,
        payload.effective_date,
        adjustment_type=payload.adjustment_type,
        description=payload.description,
        week_start_date=payload.week_start_date,
        load_number=payload.load_number,
        reference_number=payload.reference_number,
        created_by=payload.created_by,
    )
    await db.commit()
    return AdjustmentResponse.model_validate(adjustment)


@router.post(
    "/adjustments/{adjustment_id}/approve",
    response_model=AdjustmentResponse,
    responses={404: {"model": ErrorResponse}},
)
async def approve_adjustment(
    db: DbSession,
    adjustment_id: Annotated[UUID, Path()],
) -> AdjustmentResponse:
    adjustment = await AdjustmentSet(db).approve(adjustment_id)
    await db.commit()
    return AdjustmentResponse.model_validate(adjustment)


@router.post(
    "/adjustments/{adjustment_id}/reverse",
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def reverse_adjustment(
    db: DbSession,
    adjustment_id: Annotated[UUID, Path()],
    payload: ReverseRequest,
) -> AdjustmentResponse:
    """Book the offsetting entry for an adjustment."""
    reversal = await AdjustmentSet(db).reverse(
        adjustment_id,
        effective_date=payload.effective_date,
        reason=payload.reason,
        created_by=payload.created_by,
    )
    await db.commit()
    return AdjustmentResponse.model_validate(reversal)


# ============================================================================
# Payment terms
# ============================================================================


@router.get(
    "/employees/{employee_id}/payment-configs",
    response_model=list[PaymentConfigResponse],
)
async def payment_config_history(
    db: DbSession,
    employee_id: Annotated[UUID, Path()],
) -> list[PaymentConfigResponse]:
    configs = await PaymentConfigService(db).history(employee_id)
    return [PaymentConfigResponse.model_validate(c) for c in configs]


@router.post(
    "/employees/{employee_id}/payment-configs",
    response_model=PaymentConfigResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def change_payment_terms(
    db: DbSession,
    employee_id: Annotated[UUID, Path()],
    payload: PaymentTermsChange,
) -> PaymentConfigResponse:
    """Close the current terms and open new ones from effective_date."""
    config = await PaymentConfigService(db).change_terms(
        employee_id,
        payload.method,
        payload.effective_date,
        driver_percent=payload.driver_percent,
        company_percent=payload.company_percent,
        service_fee_percent=payload.service_fee_percent,
        pay_per_mile_rate=payload.pay_per_mile_rate,
        notes=payload.notes,
    )
    await db.commit()
    return PaymentConfigResponse.model_validate(config)
