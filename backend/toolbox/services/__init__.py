"""Toolbox Services"""

from .credit_store import (
    CreditStore,
    CreditTransaction,
    MongoCreditStore,
    ensure_credit_indexes,
    seed_app_registry,
)
from .credit_service import CreditService

__all__ = [
    "CreditStore",
    "CreditTransaction",
    "MongoCreditStore",
    "ensure_credit_indexes",
    "seed_app_registry",
    "CreditService",
]
