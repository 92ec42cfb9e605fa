"""
Payroll API: generation, correction, deletion and payment of payroll records.
"""
import uuid

from fastapi import APIRouter, Query, status

from staffpay.api.deps import DB, CurrentUser, ManagerOrAdmin
from staffpay.schemas.payroll import (
    PayrollGenerateRequest, PayrollListOut, PayrollOut, PayrollPayRequest, PayrollUpdate,
)
from staffpay.services.payroll_generator import PayrollGenerator

router = APIRouter(prefix="/payroll", tags=["payroll"])


@router.get("", response_model=PayrollListOut)
async def list_payrolls(
    current_user: CurrentUser,
    db: DB,
    worker_id: uuid.UUID | None = None,
    month: int | None = Query(None, ge=1, le=12),
    year: int | None = None,
    paid: bool | None = None,
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1, le=200),
):
    result = await PayrollGenerator(db).list(
        worker_id=worker_id, month=month, year=year, paid=paid, page=page, limit=limit
    )
    return PayrollListOut(items=result.items, total=result.total, page=result.page, limit=result.limit)


@router.post("", response_model=PayrollOut, status_code=status.HTTP_201_CREATED)
async def generate_payroll(payload: PayrollGenerateRequest, current_user: ManagerOrAdmin, db: DB):
    """Build the payroll of one worker for one period, recovering eligible advances."""
    return await PayrollGenerator(db).generate(
        payload.worker_id,
        payload.period_start,
        payload.period_end,
        overrides=payload.overrides.model_dump(exclude_none=True),
        actor=current_user.id,
    )


@router.get("/{payroll_id}", response_model=PayrollOut)
async def get_payroll(payroll_id: uuid.UUID, current_user: CurrentUser, db: DB):
    return await PayrollGenerator(db).get(payroll_id)


@router.put("/{payroll_id}", response_model=PayrollOut)
async def update_payroll(
    payroll_id: uuid.UUID, payload: PayrollUpdate, current_user: ManagerOrAdmin, db: DB
):
    return await PayrollGenerator(db).update(
        payroll_id, payload.model_dump(exclude_none=True), actor=current_user.id
    )


@router.delete("/{payroll_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_payroll(payroll_id: uuid.UUID, current_user: ManagerOrAdmin, db: DB):
    await PayrollGenerator(db).delete(payroll_id)


@router.post("/{payroll_id}/pay", response_model=PayrollOut)
async def pay_payroll(
    payroll_id: uuid.UUID, payload: PayrollPayRequest, current_user: ManagerOrAdmin, db: DB
):
    return await PayrollGenerator(db).mark_as_paid(
        payroll_id, payment_method=payload.payment_method, payment_reference=payload.payment_reference
    )
