"""
Pure payroll arithmetic.

compute_totals() is the only place gross salary, total deductions and net pay are
derived. Every write path (generation, update, sursalaire crediting) calls
apply_totals() explicitly right before persisting.
"""
from dataclasses import dataclass, fields
from decimal import Decimal

from staffpay.core.money import ZERO, money


@dataclass(frozen=True)
class Gains:
    base_salary: Decimal = ZERO
    transport: Decimal = ZERO
    risk: Decimal = ZERO
    total_indemnities: Decimal = ZERO
    overtime_hours: Decimal = ZERO
    sursalaire: Decimal = ZERO

    @classmethod
    def from_payroll(cls, payroll) -> "Gains":
        return cls(**{f.name: money(getattr(payroll, f.name)) for f in fields(cls)})


@dataclass(frozen=True)
class Deductions:
    accompte: Decimal = ZERO
    autres_retenues: Decimal = ZERO
    absences: Decimal = ZERO

    @classmethod
    def from_payroll(cls, payroll) -> "Deductions":
        return cls(**{f.name: money(getattr(payroll, f.name)) for f in fields(cls)})


@dataclass(frozen=True)
class Totals:
    gross_salary: Decimal
    total_retenues: Decimal
    net_amount: Decimal


def compute_totals(gains: Gains, deductions: Deductions) -> Totals:
    gross = sum((money(getattr(gains, f.name)) for f in fields(gains)), ZERO)
    retenues = sum((money(getattr(deductions, f.name)) for f in fields(deductions)), ZERO)
    return Totals(
        gross_salary=gross,
        total_retenues=retenues,
        net_amount=max(ZERO, gross - retenues),
    )


def apply_totals(payroll) -> Totals:
    totals = compute_totals(Gains.from_payroll(payroll), Deductions.from_payroll(payroll))
    payroll.gross_salary = totals.gross_salary
    payroll.total_retenues = totals.total_retenues
    payroll.net_amount = totals.net_amount
    return totals
