from pydantic import BaseModel, Field, model_validator
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

PaymentMethod = Literal["cash", "bank_transfer", "mobile_money", "check"]
Amount = Optional[Decimal]


class PayrollOverrides(BaseModel):
    """Amounts entered by hand. Anything left out comes from the contract or defaults to 0."""
    base_salary: Amount = Field(None, ge=0)
    total_indemnities: Amount = Field(None, ge=0)
    transport: Amount = Field(None, ge=0)
    risk: Amount = Field(None, ge=0)
    overtime_hours: Amount = Field(None, ge=0)
    sursalaire: Amount = Field(None, ge=0)
    accompte: Amount = Field(None, ge=0)
    autres_retenues: Amount = Field(None, ge=0)  # manual part only
    absences: Amount = Field(None, ge=0)
    cnps_employer: Amount = Field(None, ge=0)
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = None


class PayrollGenerateRequest(BaseModel):
    worker_id: uuid.UUID
    period_start: date
    period_end: date
    overrides: PayrollOverrides = Field(default_factory=PayrollOverrides)

    @model_validator(mode="after")
    def period_in_order(self):
        if self.period_start > self.period_end:
            raise ValueError("period_start must not be after period_end")
        return self


class PayrollUpdate(PayrollOverrides):
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    payment_reference: Optional[str] = None


class PayrollPayRequest(BaseModel):
    payment_method: Optional[PaymentMethod] = None
    payment_reference: Optional[str] = None


class AdvanceApplicationOut(BaseModel):
    advance_id: uuid.UUID | None
    amount: Decimal

    model_config = {"from_attributes": True}


class PayrollOut(BaseModel):
    id: uuid.UUID
    number: str
    worker_id: uuid.UUID
    work_contract_id: uuid.UUID | None
    period_start: date
    period_end: date
    month: int
    year: int

    base_salary: Decimal
    transport: Decimal
    risk: Decimal
    total_indemnities: Decimal
    overtime_hours: Decimal
    sursalaire: Decimal
    gross_salary: Decimal

    accompte: Decimal
    autres_retenues: Decimal
    absences: Decimal
    total_retenues: Decimal

    cnps_employer: Decimal
    net_amount: Decimal
    advances_applied: list[AdvanceApplicationOut]

    paid: bool
    paid_at: datetime | None
    payment_method: str
    payment_reference: str | None
    notes: str | None
    created_by: uuid.UUID | None
    created_at: datetime
    updated_at: datetime
    version: int

    model_config = {"from_attributes": True}


class PayrollListOut(BaseModel):
    items: list[PayrollOut]
    total: int
    page: int
    limit: int
