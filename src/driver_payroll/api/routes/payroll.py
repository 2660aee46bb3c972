"""Payroll record API endpoints."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from driver_payroll.api.dependencies import DbSession, Resolver, SessionFactory
from driver_payroll.api.schemas import (
    BatchRequest,
    BatchResponse,
    ComputePayrollRequest,
    ErrorResponse,
    LoadMoveRequest,
    LoadMoveResponse,
    PayrollDetailResponse,
    PayrollLoadResponse,
    PayrollResponse,
    PaystubResponse,
    ProcessRequest,
    ReviewRequest,
    UnlockRequest,
    WeekLockRequest,
    WeekLockResponse,
)
from driver_payroll.errors import NotFoundError
from driver_payroll.services.batch_service import BatchPayrollService
from driver_payroll.services.payroll_service import PayrollRecordService

router = APIRouter(prefix="/payroll", tags=["payroll"])


# ============================================================================
# Calculation
# ============================================================================


@router.post(
    "",
    response_model=PayrollResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        423: {"model": ErrorResponse},
    },
)
async def compute_payroll(
    db: DbSession,
    resolver: Resolver,
    payload: ComputePayrollRequest,
) -> PayrollResponse:
    """Create (or recalculate) the payroll record for one employee and week."""
    service = PayrollRecordService(db, resolver)
    record = await service.compute_period_payroll(
        payload.employee_id,
        payload.week_start,
        payload.week_end,
        recalculate=payload.recalculate,
    )
    await db.commit()
    return PayrollResponse.model_validate(record)


@router.post("/batch", response_model=BatchResponse)
async def run_batch(
    session_factory: SessionFactory,
    resolver: Resolver,
    payload: BatchRequest,
) -> BatchResponse:
    """Calculate payroll for every active employee in the week.

    Per-employee failures are reported as rows; the request itself succeeds.
    """
    service = BatchPayrollService(session_factory, resolver)
    result = await service.run_batch_payroll(
        payload.week_start,
        payload.week_end,
        employee_ids=payload.employee_ids,
        skip_without_loads=payload.skip_without_loads,
    )
    return BatchResponse.model_validate(result)


@router.get("", response_model=list[PayrollResponse])
async def list_payroll(
    db: DbSession,
    week_start: Annotated[date, Query()],
) -> list[PayrollResponse]:
    service = PayrollRecordService(db)
    records = await service.list_for_week(week_start)
    return [PayrollResponse.model_validate(r) for r in records]


@router.get(
    "/{payroll_id}",
    response_model=PayrollDetailResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll(
    db: DbSession,
    payroll_id: Annotated[UUID, Path()],
) -> PayrollDetailResponse:
    """Get a payroll record with its load lines and linked adjustments."""
    service = PayrollRecordService(db)
    record = await service.get_payroll(payroll_id)
    detail = PayrollDetailResponse.model_validate(record)
    detail.loads = [
        PayrollLoadResponse.model_validate(line) for line in await service.loads_for(payroll_id)
    ]
    detail.adjustment_ids = [
        link.adjustment_id for link in await service.adjustment_links_for(payroll_id)
    ]
    return detail


@router.post(
    "/{payroll_id}/calculate",
    response_model=PayrollResponse,
    responses={404: {"model": ErrorResponse}, 423: {"model": ErrorResponse}},
)
async def recalculate_payroll(
    db: DbSession,
    resolver: Resolver,
    payroll_id: Annotated[UUID, Path()],
) -> PayrollResponse:
    service = PayrollRecordService(db, resolver)
    record = await service.calculate(payroll_id)
    await db.commit()
    return PayrollResponse.model_validate(record)


# ============================================================================
# Lifecycle
# ============================================================================


@router.post(
    "/{payroll_id}/review",
    response_model=PayrollResponse,
    responses={409: {"model": ErrorResponse}},
)
async def review_payroll(
    db: DbSession,
    payroll_id: Annotated[UUID, Path()],
    payload: ReviewRequest,
) -> PayrollResponse:
    service = PayrollRecordService(db)
    record = await service.review(payroll_id, payload.reviewed_by)
    await db.commit()
    return PayrollResponse.model_validate(record)


@router.post(
    "/{payroll_id}/process",
    response_model=PaystubResponse,
    responses={409: {"model": ErrorResponse}, 423: {"model": ErrorResponse}},
)
async def process_payroll(
    db: DbSession,
    resolver: Resolver,
    payroll_id: Annotated[UUID, Path()],
    payload: ProcessRequest,
) -> PaystubResponse:
    """Lock the record, write its paystub and post ledger effects.

    Returns 409 when the ledgers changed since the last calculation.
    """
    service = PayrollRecordService(db, resolver)
    paystub = await service.process_payroll(payroll_id, payload.processed_by)
    await db.commit()
    return PaystubResponse.model_validate(paystub)


@router.post(
    "/{payroll_id}/pay",
    response_model=PayrollResponse,
    responses={409: {"model": ErrorResponse}},
)
async def mark_paid(
    db: DbSession,
    payroll_id: Annotated[UUID, Path()],
) -> PayrollResponse:
    service = PayrollRecordService(db)
    record = await service.mark_paid(payroll_id)
    await db.commit()
    return PayrollResponse.model_validate(record)


@router.post(
    "/{payroll_id}/unlock",
    response_model=PayrollResponse,
    responses={409: {"model": ErrorResponse}},
)
async def unlock_payroll(
    db: DbSession,
    payroll_id: Annotated[UUID, Path()],
    payload: UnlockRequest,
) -> PayrollResponse:
    service = PayrollRecordService(db)
    record = await service.unlock(payroll_id, payload.reason)
    await db.commit()
    return PayrollResponse.model_validate(record)


@router.delete(
    "/{payroll_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={409: {"model": ErrorResponse}, 423: {"model": ErrorResponse}},
)
async def delete_payroll(
    db: DbSession,
    payroll_id: Annotated[UUID, Path()],
) -> None:
    service = PayrollRecordService(db)
    await service.delete_payroll(payroll_id)
    await db.commit()


@router.put("/weeks/{week_start}/lock", response_model=WeekLockResponse)
async def set_week_lock(
    db: DbSession,
    week_start: Annotated[date, Path()],
    payload: WeekLockRequest,
) -> WeekLockResponse:
    service = PayrollRecordService(db)
    updated = await service.set_week_lock(week_start, payload.locked)
    await db.commit()
    return WeekLockResponse(week_start=week_start, locked=payload.locked, updated=updated)


@router.post(
    "/loads/{load_id}/move",
    response_model=LoadMoveResponse,
    responses={404: {"model": ErrorResponse}, 423: {"model": ErrorResponse}},
)
async def move_load(
    db: DbSession,
    resolver: Resolver,
    load_id: Annotated[UUID, Path()],
    payload: LoadMoveRequest,
) -> LoadMoveResponse:
    """Pay a load in another week; both weeks must be unlocked."""
    service = PayrollRecordService(db, resolver)
    move = await service.move_load(
        load_id, payload.target_week_start, payload.moved_by, payload.reason
    )
    await db.commit()
    return LoadMoveResponse(
        load_id=move.load.load_id,
        load_number=move.load.load_number,
        from_week=move.from_week,
        to_week=move.to_week,
        recalculated=[PayrollResponse.model_validate(r) for r in move.recalculated],
    )


# ============================================================================
# Paystubs
# ============================================================================


@router.get(
    "/{payroll_id}/paystub",
    response_model=PaystubResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_paystub(
    db: DbSession,
    payroll_id: Annotated[UUID, Path()],
) -> PaystubResponse:
    service = PayrollRecordService(db)
    paystub = await service.get_paystub(payroll_id)
    if paystub is None:
        raise NotFoundError("Paystub for payroll", payroll_id)
    return PaystubResponse.model_validate(paystub)


@router.post(
    "/{payroll_id}/paystub/regenerate",
    response_model=PaystubResponse,
    responses={404: {"model": ErrorResponse}},
)
async def regenerate_paystub(
    db: DbSession,
    payroll_id: Annotated[UUID, Path()],
) -> PaystubResponse:
    service = PayrollRecordService(db)
    paystub = await service.regenerate_paystub(payroll_id)
    await db.commit()
    return PaystubResponse.model_validate(paystub)
