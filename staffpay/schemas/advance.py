from pydantic import BaseModel, Field, model_validator
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

AdvanceReason = Literal["medical", "family", "education", "housing", "emergency", "other"]


class RecoveryPolicy(BaseModel):
    monthly_recovery: Decimal = Field(Decimal("0"), ge=0)
    recovery_percentage: Decimal = Field(Decimal("0"), ge=0, le=100)
    max_recovery_amount: Decimal = Field(Decimal("0"), ge=0)


class AdvanceCreate(RecoveryPolicy):
    worker_id: uuid.UUID
    amount: Decimal = Field(gt=0)
    status: Literal["draft", "requested", "approved"] = "requested"
    requested_at: Optional[datetime] = None
    reason: AdvanceReason = "other"
    notes: Optional[str] = None
    payment_method: str = "bank_transfer"

    @model_validator(mode="after")
    def monthly_within_amount(self):
        if self.monthly_recovery > self.amount:
            raise ValueError("monthly_recovery cannot exceed the advance amount")
        return self


class AdvanceApprove(BaseModel):
    monthly_recovery: Optional[Decimal] = Field(None, ge=0)
    recovery_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    max_recovery_amount: Optional[Decimal] = Field(None, ge=0)


class AdvanceReject(BaseModel):
    reason: str = Field(min_length=1)


class AdvanceUpdate(BaseModel):
    notes: Optional[str] = None
    reason: Optional[AdvanceReason] = None


class AdvanceDisburse(BaseModel):
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None


class RepaymentCreate(BaseModel):
    amount: Decimal = Field(gt=0)
    payment_method: str = "cash"
    notes: Optional[str] = None


class ApplyToPayrollRequest(BaseModel):
    payroll_id: uuid.UUID


class RepaymentOut(BaseModel):
    id: uuid.UUID
    amount: Decimal
    repayment_date: datetime
    payroll_id: uuid.UUID | None
    payment_method: str
    recorded_by: uuid.UUID | None
    notes: str | None

    model_config = {"from_attributes": True}


class AdvanceOut(BaseModel):
    id: uuid.UUID
    number: str
    worker_id: uuid.UUID
    amount: Decimal
    remaining: Decimal
    total_repaid: Decimal
    monthly_recovery: Decimal
    recovery_percentage: Decimal
    max_recovery_amount: Decimal
    status: str
    reason: str
    notes: str | None
    payment_method: str
    payment_reference: str | None
    requested_at: datetime
    approved_at: datetime | None
    rejected_at: datetime | None
    rejected_reason: str | None
    paid_at: datetime | None
    closed_at: datetime | None
    cancelled_at: datetime | None
    number_of_repayments: int
    repayments: list[RepaymentOut]
    version: int

    model_config = {"from_attributes": True}


class AdvanceStatsOut(BaseModel):
    worker_id: uuid.UUID
    total_advances: int
    by_status: dict[str, int]
    total_amount: Decimal
    total_repaid: Decimal
    outstanding: Decimal
