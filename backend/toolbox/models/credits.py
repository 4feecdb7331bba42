"""Credit Balance & Ledger Models

Storage layout:
- app_credits: one BalanceRecord per (app_id, user_id)
- credit_ledger: append-only LedgerEntry per balance mutation

Records of apps without a credit system carry only role and created_at.
A missing balance therefore means "no credit system", never zero.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum
import uuid


class AppRole(str, Enum):
    """App-scoped role, independent of the supervisor claim"""
    USER = "user"
    ADMINISTRATOR = "administrator"


class LedgerSource(str, Enum):
    """Operation that produced a ledger entry"""
    CONSUMPTION = "consumption"
    ADMIN = "admin"


DEFAULT_CONSUMPTION_REASON = "consumption"
DEFAULT_ADJUSTMENT_REASON = "admin_adjustment"

# Largest integer MongoDB stores (signed 64-bit)
MAX_CREDIT_VALUE = 2 ** 63 - 1

# Older records were written with these names.
LEGACY_FIELD_NAMES = {
    "credits": "balance",
    "totalUsedThisMonth": "used_this_period",
    "lastResetAt": "period_reset_at",
    "createdAt": "created_at",
    "uid": "user_id",
    "appId": "app_id",
}

ROLE_ALIASES = {
    "admin": AppRole.ADMINISTRATOR.value,
}


def normalize_balance_document(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Map a stored balance document onto canonical field names.

    Canonical names win when a document carries both spellings.
    """
    normalized: Dict[str, Any] = {}
    for key, value in doc.items():
        if key == "_id":
            continue
        canonical = LEGACY_FIELD_NAMES.get(key, key)
        if canonical != key and canonical in doc:
            continue
        normalized[canonical] = value

    role = normalized.get("role")
    if role is None or role not in (r.value for r in AppRole):
        normalized["role"] = ROLE_ALIASES.get(role, AppRole.USER.value)
    return normalized


def legacy_names_for(fields) -> List[str]:
    """Legacy field names superseded by the given canonical fields."""
    return [legacy for legacy, canonical in LEGACY_FIELD_NAMES.items() if canonical in fields]


class CamelModel(BaseModel):
    """Base for models exposed over the API with camelCase keys."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        validate_default=True,
        extra="ignore",
    )


class BalanceRecord(CamelModel):
    """Current credit state of one user within one app."""
    app_id: str
    user_id: str

    # Absent for apps without a credit system
    balance: Optional[int] = None
    used_this_period: Optional[int] = None
    period_reset_at: Optional[datetime] = None

    role: AppRole = AppRole.USER
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any], app_id: str = None, user_id: str = None) -> "BalanceRecord":
        data = normalize_balance_document(doc)
        if app_id is not None:
            data.setdefault("app_id", app_id)
        if user_id is not None:
            data.setdefault("user_id", user_id)
        return cls.model_validate(data)

    @property
    def has_credits(self) -> bool:
        return self.balance is not None

    def server_timestamp_fields(self) -> List[str]:
        """Fields the store stamps with its own clock when the record is created."""
        if self.has_credits:
            return ["created_at", "period_reset_at"]
        return ["created_at"]

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def to_public(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class LedgerEntry(CamelModel):
    """Immutable audit record of one balance mutation.

    delta is the raw requested change; balance_after is what was stored.
    created_at is assigned by the store when the entry is written.
    """
    ledger_id: str = Field(default_factory=lambda: f"LED-{uuid.uuid4().hex[:12].upper()}")
    app_id: str
    user_id: str

    delta: int
    balance_after: int
    reason: str
    source: LedgerSource
    actor_id: str

    created_at: Optional[datetime] = None


class CreditSnapshot(CamelModel):
    """Read view of a balance record with defaults for missing fields."""
    balance: int = 0
    used_this_period: int = 0
    period_reset_at: Optional[datetime] = None
    role: AppRole = AppRole.USER

    @classmethod
    def from_record(cls, record: BalanceRecord) -> "CreditSnapshot":
        return cls(
            balance=record.balance if record.balance is not None else 0,
            used_this_period=record.used_this_period if record.used_this_period is not None else 0,
            period_reset_at=record.period_reset_at,
            role=record.role,
        )


# ============================================================================
# Operation results
# ============================================================================

class InitializeResult(CamelModel):
    success: bool = True
    initialized: bool
    data: Dict[str, Any]


class ReadResult(CamelModel):
    success: bool = True
    exists: bool
    data: Optional[CreditSnapshot] = None


class ConsumeResult(CamelModel):
    success: bool = True
    credits_remaining: int
    total_used_this_month: int


class AdjustResult(CamelModel):
    success: bool = True
    credits_before: int
    credits_after: int
    adjusted_by: str


class SetRoleResult(CamelModel):
    success: bool = True
    app_id: str
    target_user_id: str
    role: AppRole


class AppUsersResult(CamelModel):
    success: bool = True
    app_id: str
    users: List[BalanceRecord]
    limit: int
    offset: int


class LedgerResult(CamelModel):
    success: bool = True
    app_id: str
    entries: List[LedgerEntry]
    limit: int
    offset: int


class UserAppsResult(CamelModel):
    success: bool = True
    user_id: str
    apps: List[BalanceRecord]
