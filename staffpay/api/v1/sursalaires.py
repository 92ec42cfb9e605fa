"""
Sursalaire API: preview and credit advance recoveries to a beneficiary worker.
"""
import uuid
from datetime import date

from fastapi import APIRouter, Query, status

from staffpay.api.deps import DB, CurrentUser, ManagerOrAdmin
from staffpay.schemas.sursalaire import (
    DeductionSummaryOut, SursalaireCancel, SursalaireCreate, SursalaireCredit, SursalaireOut,
)
from staffpay.services.sursalaire_aggregator import SursalaireAggregator

router = APIRouter(prefix="/sursalaires", tags=["sursalaires"])


@router.get("/deductions", response_model=DeductionSummaryOut)
async def preview_deductions(
    current_user: CurrentUser,
    db: DB,
    period_start: date,
    period_end: date,
):
    """Advance recoveries withheld from paid payrolls in the window, per agent."""
    return await SursalaireAggregator(db).calculate_advance_deductions_for_period(period_start, period_end)


@router.get("", response_model=list[SursalaireOut])
async def list_sursalaires(
    current_user: CurrentUser,
    db: DB,
    beneficiary_id: uuid.UUID | None = None,
    status: str | None = None,
    month: int | None = Query(None, ge=1, le=12),
    year: int | None = None,
):
    return await SursalaireAggregator(db).list(
        beneficiary_id=beneficiary_id, status=status, month=month, year=year
    )


@router.post("", response_model=SursalaireOut, status_code=status.HTTP_201_CREATED)
async def create_sursalaire(payload: SursalaireCreate, current_user: ManagerOrAdmin, db: DB):
    return await SursalaireAggregator(db).create_sursalaire(
        payload.beneficiary_id,
        payload.period_start,
        payload.period_end,
        actor=current_user.id,
        notes=payload.notes,
    )


@router.get("/{sursalaire_id}", response_model=SursalaireOut)
async def get_sursalaire(sursalaire_id: uuid.UUID, current_user: CurrentUser, db: DB):
    return await SursalaireAggregator(db).get(sursalaire_id)


@router.post("/{sursalaire_id}/credit", response_model=SursalaireOut)
async def credit_sursalaire(
    sursalaire_id: uuid.UUID, payload: SursalaireCredit, current_user: ManagerOrAdmin, db: DB
):
    return await SursalaireAggregator(db).credit_sursalaire(
        sursalaire_id, actor=current_user.id, target_payroll_id=payload.target_payroll_id
    )


@router.post("/{sursalaire_id}/cancel", response_model=SursalaireOut)
async def cancel_sursalaire(
    sursalaire_id: uuid.UUID, payload: SursalaireCancel, current_user: ManagerOrAdmin, db: DB
):
    return await SursalaireAggregator(db).cancel_sursalaire(
        sursalaire_id, actor=current_user.id, reason=payload.reason
    )
