"""Concrete repository implementations using SQLModel."""

from .debt import SQLModelDebtPaymentRepository, SQLModelDebtRepository
from .projection import SQLModelProjectionRepository, projection_model
from .transaction import SQLModelTransactionRepository
from .usage import SQLModelUsageRepository
from .user import SQLModelUserRepository

__all__ = [
    "SQLModelDebtPaymentRepository",
    "SQLModelDebtRepository",
    "SQLModelProjectionRepository",
    "SQLModelTransactionRepository",
    "SQLModelUsageRepository",
    "SQLModelUserRepository",
    "projection_model",
]
