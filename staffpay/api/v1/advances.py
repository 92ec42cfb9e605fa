"""
Advances API: cash advances, their approval and their repayments.
"""
import uuid

from fastapi import APIRouter, status

from staffpay.api.deps import DB, CurrentUser, ManagerOrAdmin
from staffpay.schemas.advance import (
    AdvanceApprove, AdvanceCreate, AdvanceDisburse, AdvanceOut, AdvanceReject, AdvanceStatsOut,
    AdvanceUpdate, ApplyToPayrollRequest, RepaymentCreate,
)
from staffpay.schemas.payroll import PayrollOut
from staffpay.services.advance_ledger import AdvanceLedger
from staffpay.services.payroll_generator import PayrollGenerator

router = APIRouter(prefix="/advances", tags=["advances"])


@router.get("", response_model=list[AdvanceOut])
async def list_advances(
    current_user: CurrentUser,
    db: DB,
    worker_id: uuid.UUID | None = None,
    status: str | None = None,
):
    return await AdvanceLedger(db).list(worker_id=worker_id, status=status)


@router.post("", response_model=AdvanceOut, status_code=status.HTTP_201_CREATED)
async def create_advance(payload: AdvanceCreate, current_user: ManagerOrAdmin, db: DB):
    return await AdvanceLedger(db).create(
        payload.worker_id,
        payload.amount,
        monthly_recovery=payload.monthly_recovery,
        recovery_percentage=payload.recovery_percentage,
        max_recovery_amount=payload.max_recovery_amount,
        status=payload.status,
        requested_at=payload.requested_at,
        reason=payload.reason,
        notes=payload.notes,
        payment_method=payload.payment_method,
        actor=current_user.id,
    )


@router.get("/stats/{worker_id}", response_model=AdvanceStatsOut)
async def worker_advance_stats(worker_id: uuid.UUID, current_user: CurrentUser, db: DB):
    return await AdvanceLedger(db).worker_stats(worker_id)


@router.get("/{advance_id}", response_model=AdvanceOut)
async def get_advance(advance_id: uuid.UUID, current_user: CurrentUser, db: DB):
    return await AdvanceLedger(db).get(advance_id)


@router.patch("/{advance_id}", response_model=AdvanceOut)
async def update_advance(
    advance_id: uuid.UUID, payload: AdvanceUpdate, current_user: ManagerOrAdmin, db: DB
):
    return await AdvanceLedger(db).update(
        advance_id, notes=payload.notes, reason=payload.reason, actor=current_user.id
    )


@router.post("/{advance_id}/approve", response_model=AdvanceOut)
async def approve_advance(
    advance_id: uuid.UUID, payload: AdvanceApprove, current_user: ManagerOrAdmin, db: DB
):
    return await AdvanceLedger(db).approve(
        advance_id,
        actor=current_user.id,
        monthly_recovery=payload.monthly_recovery,
        recovery_percentage=payload.recovery_percentage,
        max_recovery_amount=payload.max_recovery_amount,
    )


@router.post("/{advance_id}/reject", response_model=AdvanceOut)
async def reject_advance(
    advance_id: uuid.UUID, payload: AdvanceReject, current_user: ManagerOrAdmin, db: DB
):
    return await AdvanceLedger(db).reject(advance_id, payload.reason, actor=current_user.id)


@router.post("/{advance_id}/cancel", response_model=AdvanceOut)
async def cancel_advance(advance_id: uuid.UUID, current_user: ManagerOrAdmin, db: DB):
    return await AdvanceLedger(db).cancel(advance_id, actor=current_user.id)


@router.post("/{advance_id}/close", response_model=AdvanceOut)
async def close_advance(advance_id: uuid.UUID, current_user: ManagerOrAdmin, db: DB):
    return await AdvanceLedger(db).close(advance_id)


@router.post("/{advance_id}/disburse", response_model=AdvanceOut)
async def disburse_advance(
    advance_id: uuid.UUID, payload: AdvanceDisburse, current_user: ManagerOrAdmin, db: DB
):
    return await AdvanceLedger(db).mark_disbursed(
        advance_id,
        payment_method=payload.payment_method,
        payment_reference=payload.payment_reference,
        actor=current_user.id,
    )


@router.post("/{advance_id}/repayments", response_model=AdvanceOut)
async def add_repayment(
    advance_id: uuid.UUID, payload: RepaymentCreate, current_user: ManagerOrAdmin, db: DB
):
    """Record a repayment made outside payroll (cash, transfer)."""
    return await AdvanceLedger(db).add_manual_repayment(
        advance_id,
        payload.amount,
        payment_method=payload.payment_method,
        notes=payload.notes,
        actor=current_user.id,
    )


@router.post("/{advance_id}/apply", response_model=PayrollOut)
async def apply_to_payroll(
    advance_id: uuid.UUID, payload: ApplyToPayrollRequest, current_user: ManagerOrAdmin, db: DB
):
    return await PayrollGenerator(db).apply_advance_to_payroll(
        advance_id, payload.payroll_id, actor=current_user.id
    )
