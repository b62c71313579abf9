"""SQLModel table exports."""

from .debt import Debt, DebtPayment
from .projection import Expense, LedgerProjection, Revenue
from .transaction import Transaction
from .usage import MonthlyUsage
from .user import User

__all__ = [
    "Debt",
    "DebtPayment",
    "Expense",
    "LedgerProjection",
    "MonthlyUsage",
    "Revenue",
    "Transaction",
    "User",
]
