from staffpay.schemas.auth import Token, LoginRequest, UserOut
from staffpay.schemas.payroll import (
    PayrollGenerateRequest, PayrollOverrides, PayrollUpdate, PayrollPayRequest, PayrollOut, PayrollListOut,
)
from staffpay.schemas.advance import (
    AdvanceCreate, AdvanceApprove, AdvanceReject, AdvanceUpdate, AdvanceDisburse, RepaymentCreate,
    ApplyToPayrollRequest, AdvanceOut, AdvanceStatsOut,
)
from staffpay.schemas.sursalaire import (
    PeriodQuery, SursalaireCreate, SursalaireCredit, SursalaireCancel, DeductionSummaryOut, SursalaireOut,
)

__all__ = [
    "Token", "LoginRequest", "UserOut",
    "PayrollGenerateRequest", "PayrollOverrides", "PayrollUpdate", "PayrollPayRequest",
    "PayrollOut", "PayrollListOut",
    "AdvanceCreate", "AdvanceApprove", "AdvanceReject", "AdvanceUpdate", "AdvanceDisburse", "RepaymentCreate",
    "ApplyToPayrollRequest", "AdvanceOut", "AdvanceStatsOut",
    "PeriodQuery", "SursalaireCreate", "SursalaireCredit", "SursalaireCancel",
    "DeductionSummaryOut", "SursalaireOut",
]
