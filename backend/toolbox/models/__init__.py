"""Toolbox Data Models"""

from .credits import (
    AppRole,
    LedgerSource,
    BalanceRecord,
    LedgerEntry,
    CreditSnapshot,
    InitializeResult,
    ReadResult,
    ConsumeResult,
    AdjustResult,
    SetRoleResult,
    AppUsersResult,
    LedgerResult,
    UserAppsResult,
)
from .apps import AppConfig, DEFAULT_APPS
from .identity import CallerIdentity

__all__ = [
    # Credits
    "AppRole",
    "LedgerSource",
    "BalanceRecord",
    "LedgerEntry",
    "CreditSnapshot",
    # Results
    "InitializeResult",
    "ReadResult",
    "ConsumeResult",
    "AdjustResult",
    "SetRoleResult",
    "AppUsersResult",
    "LedgerResult",
    "UserAppsResult",
    # Registry
    "AppConfig",
    "DEFAULT_APPS",
    # Identity
    "CallerIdentity",
]
