"""
Model registry: importing this module registers every table on Base.metadata
(used by create_tables, alembic and the tests).
"""

from app.core.db.base import Base
from app.modules.banking.models import BankingConfig, SyncRun, SyncRunStatus
from app.modules.children.models import Child, Fee, FeeType, Parent, child_parents
from app.modules.imports.models import ImportBatch
from app.modules.known_ibans.models import IBANStatus, KnownIBAN
from app.modules.transactions.models import (
    BankTransaction,
    MatchState,
    PaymentAllocation,
    TransactionSource,
)
from app.modules.warnings.models import ResolutionType, TransactionWarning, WarningKind

__all__ = [
    "Base",
    "BankingConfig",
    "SyncRun",
    "SyncRunStatus",
    "Child",
    "Parent",
    "Fee",
    "FeeType",
    "child_parents",
    "ImportBatch",
    "KnownIBAN",
    "IBANStatus",
    "BankTransaction",
    "PaymentAllocation",
    "MatchState",
    "TransactionSource",
    "TransactionWarning",
    "WarningKind",
    "ResolutionType",
]
