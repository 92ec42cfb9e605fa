from pydantic import BaseModel, model_validator
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional


class PeriodQuery(BaseModel):
    period_start: date
    period_end: date

    @model_validator(mode="after")
    def period_in_order(self):
        if self.period_start > self.period_end:
            raise ValueError("period_start must not be after period_end")
        return self


class SursalaireCreate(PeriodQuery):
    beneficiary_id: uuid.UUID
    notes: Optional[str] = None


class SursalaireCredit(BaseModel):
    target_payroll_id: Optional[uuid.UUID] = None


class SursalaireCancel(BaseModel):
    reason: Optional[str] = None


class DeductionLineOut(BaseModel):
    advance_id: uuid.UUID
    advance_number: str | None
    payroll_id: uuid.UUID
    agent_id: uuid.UUID
    deduction_amount: Decimal
    deduction_date: date

    model_config = {"from_attributes": True}


class AgentDeductionsOut(BaseModel):
    agent_id: uuid.UUID
    total: Decimal
    lines: list[DeductionLineOut]

    model_config = {"from_attributes": True}


class DeductionSummaryOut(BaseModel):
    period_start: date
    period_end: date
    total: Decimal
    skipped: int
    agents: list[AgentDeductionsOut]

    model_config = {"from_attributes": True}


class SursalaireOut(BaseModel):
    id: uuid.UUID
    number: str
    beneficiary_id: uuid.UUID
    period_start: date
    period_end: date
    month: int
    year: int
    total_advance_deductions: Decimal
    credited_amount: Decimal
    status: str
    credited_at: datetime | None
    credited_by: uuid.UUID | None
    beneficiary_payroll_id: uuid.UUID | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    notes: str | None
    advance_deductions: list[DeductionLineOut]
    created_at: datetime
    version: int

    model_config = {"from_attributes": True}
