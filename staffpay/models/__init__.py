from staffpay.models.user import User
from staffpay.models.worker import Worker
from staffpay.models.work_contract import WorkContract
from staffpay.models.payroll import Payroll, PayrollAdvanceApplication
from staffpay.models.advance import Advance, AdvanceRepayment
from staffpay.models.sursalaire import Sursalaire, SursalaireDeduction
from staffpay.models.counter import NumberCounter

__all__ = [
    "User",
    "Worker",
    "WorkContract",
    "Payroll",
    "PayrollAdvanceApplication",
    "Advance",
    "AdvanceRepayment",
    "Sursalaire",
    "SursalaireDeduction",
    "NumberCounter",
]
