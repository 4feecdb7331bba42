"""Toolbox Credit Service

Handles all per-app credit operations:
- Initialize: create a user's record for an app on first use
- Read: point lookup of the caller's balance
- Consume: spend credits after a successful app action (rejects overdraw)
- Admin adjust: supervisor correction of a balance (clamps at zero)
- App roles and admin listings (per app, per user)

Every balance mutation writes exactly one ledger entry in the same store
transaction. All argument checks run before the store is touched.
"""

from typing import Optional, Any
import logging

from toolbox.errors import (
    Unauthenticated,
    PermissionDenied,
    InvalidArgument,
    NotFound,
    ResourceExhausted,
)
from toolbox.models.credits import (
    AppRole,
    BalanceRecord,
    LedgerEntry,
    LedgerSource,
    CreditSnapshot,
    InitializeResult,
    ReadResult,
    ConsumeResult,
    AdjustResult,
    SetRoleResult,
    AppUsersResult,
    LedgerResult,
    UserAppsResult,
    DEFAULT_CONSUMPTION_REASON,
    DEFAULT_ADJUSTMENT_REASON,
    MAX_CREDIT_VALUE,
)
from toolbox.models.identity import CallerIdentity
from toolbox.roles import Permission, Role, get_effective_role, has_permission
from toolbox.services.credit_store import CreditStore

logger = logging.getLogger(__name__)


def _require_identity(identity: Optional[CallerIdentity]) -> CallerIdentity:
    if identity is None or not identity.uid:
        raise Unauthenticated("Authentication required")
    return identity


def _require_supervisor(identity: Optional[CallerIdentity]) -> CallerIdentity:
    caller = _require_identity(identity)
    if not caller.is_supervisor:
        raise PermissionDenied("Supervisor access required")
    return caller


def _require_string(value: Any, name: str) -> str:
    if not value or not isinstance(value, str):
        raise InvalidArgument(f"{name} is required")
    return value


def _require_whole_number(value: Any, name: str) -> int:
    # bool is an int subclass but not a number here
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidArgument(f"{name} must be a number")
    if isinstance(value, float) and not value.is_integer():
        raise InvalidArgument(f"{name} must be a whole number")
    number = int(value)
    if abs(number) > MAX_CREDIT_VALUE:
        raise InvalidArgument(f"{name} must be a whole number within range")
    return number


def _optional_reason(value: Any, default: str) -> str:
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        raise InvalidArgument("reason must be a string")
    return value


class CreditService:
    """Per-app credit operations over an injected CreditStore."""

    def __init__(self, store: CreditStore):
        self.store = store

    async def initialize(self, identity: Optional[CallerIdentity], app_id: Any) -> InitializeResult:
        """Create the caller's record for an app if it does not exist yet.

        Credit-bearing apps start at their monthly allotment. The allotment
        is snapshotted: later registry changes do not touch existing records.
        """
        caller = _require_identity(identity)
        app_id = _require_string(app_id, "appId")

        async def _initialize(tx) -> InitializeResult:
            existing = await tx.get_balance(app_id, caller.uid)
            if existing is not None:
                return InitializeResult(initialized=False, data=existing.to_public())

            app_config = await tx.get_app_config(app_id)

            record = BalanceRecord(app_id=app_id, user_id=caller.uid, role=AppRole.USER)
            if app_config and app_config.has_credits:
                record.balance = min(max(0, app_config.monthly_allotment), MAX_CREDIT_VALUE)
                record.used_this_period = 0

            record = await tx.create_balance(record)
            return InitializeResult(initialized=True, data=record.to_public())

        result = await self.store.run_transaction(_initialize)
        if result.initialized:
            logger.info(f"Initialized user {caller.uid} for app {app_id}")
        return result

    async def read(self, identity: Optional[CallerIdentity], app_id: Any) -> ReadResult:
        """Read the caller's credits. Never writes."""
        caller = _require_identity(identity)
        app_id = _require_string(app_id, "appId")

        record = await self.store.get_balance(app_id, caller.uid)
        if record is None:
            return ReadResult(exists=False, data=None)

        return ReadResult(exists=True, data=CreditSnapshot.from_record(record))

    async def consume(
        self,
        identity: Optional[CallerIdentity],
        app_id: Any,
        amount: Any,
        reason: Any = None,
    ) -> ConsumeResult:
        """Deduct credits from the caller's balance.

        Fails with ResourceExhausted, writing nothing, if the balance is
        smaller than amount. Never initializes a missing record.
        """
        caller = _require_identity(identity)
        app_id = _require_string(app_id, "appId")
        amount = _require_whole_number(amount, "amount")
        if amount <= 0:
            raise InvalidArgument("amount must be a positive number")
        reason = _optional_reason(reason, DEFAULT_CONSUMPTION_REASON)

        async def _consume(tx) -> ConsumeResult:
            record = await tx.get_balance(app_id, caller.uid)
            if record is None:
                raise NotFound("User not initialized for this app")

            current = record.balance or 0
            if current < amount:
                logger.warning(
                    f"Insufficient credits for user {caller.uid} in app {app_id}. "
                    f"Has {current}, needs {amount}"
                )
                raise ResourceExhausted("Insufficient credits")

            new_balance = current - amount
            new_used = min((record.used_this_period or 0) + amount, MAX_CREDIT_VALUE)

            await tx.update_balance(app_id, caller.uid, {
                "balance": new_balance,
                "used_this_period": new_used,
            })
            await tx.append_ledger(LedgerEntry(
                app_id=app_id,
                user_id=caller.uid,
                delta=-amount,
                balance_after=new_balance,
                reason=reason,
                source=LedgerSource.CONSUMPTION,
                actor_id=caller.uid,
            ))

            return ConsumeResult(credits_remaining=new_balance, total_used_this_month=new_used)

        result = await self.store.run_transaction(_consume)
        logger.info(
            f"Consumed {amount} credits for user {caller.uid} in app {app_id}. "
            f"Remaining: {result.credits_remaining}"
        )
        return result

    async def admin_adjust(
        self,
        identity: Optional[CallerIdentity],
        app_id: Any,
        target_user_id: Any,
        delta: Any,
        reason: Any = None,
    ) -> AdjustResult:
        """Supervisor-only balance correction.

        The new balance is floored at zero instead of rejected; the ledger
        keeps the raw requested delta.
        """
        caller = _require_supervisor(identity)
        app_id = _require_string(app_id, "appId")
        target_user_id = _require_string(target_user_id, "targetUserId")
        delta = _require_whole_number(delta, "delta")
        reason = _optional_reason(reason, DEFAULT_ADJUSTMENT_REASON)

        async def _adjust(tx) -> AdjustResult:
            record = await tx.get_balance(app_id, target_user_id)
            if record is None:
                raise NotFound("Target user not found for this app")

            before = record.balance or 0
            after = max(0, before + delta)
            if after > MAX_CREDIT_VALUE:
                raise InvalidArgument("delta would push the balance out of range")

            await tx.update_balance(app_id, target_user_id, {"balance": after})
            await tx.append_ledger(LedgerEntry(
                app_id=app_id,
                user_id=target_user_id,
                delta=delta,
                balance_after=after,
                reason=reason,
                source=LedgerSource.ADMIN,
                actor_id=caller.uid,
            ))

            return AdjustResult(credits_before=before, credits_after=after, adjusted_by=caller.uid)

        result = await self.store.run_transaction(_adjust)
        logger.info(
            f"Supervisor {caller.uid} adjusted credits of user {target_user_id} in app {app_id} "
            f"by {delta}: {result.credits_before} -> {result.credits_after}"
        )
        return result

    async def set_app_role(
        self,
        identity: Optional[CallerIdentity],
        app_id: Any,
        target_user_id: Any,
        role: Any,
    ) -> SetRoleResult:
        """Supervisor-only assignment of the app-scoped role.

        Creates a minimal record (no balance fields) when the target has
        none yet. Balances are untouched, so no ledger entry is written.
        """
        caller = _require_supervisor(identity)
        app_id = _require_string(app_id, "appId")
        target_user_id = _require_string(target_user_id, "targetUserId")
        valid_roles = [r.value for r in AppRole]
        if role not in valid_roles:
            raise InvalidArgument(f"role must be one of: {', '.join(valid_roles)}")
        role = AppRole(role)

        async def _set_role(tx) -> SetRoleResult:
            record = await tx.get_balance(app_id, target_user_id)
            if record is None:
                await tx.create_balance(BalanceRecord(
                    app_id=app_id,
                    user_id=target_user_id,
                    role=role,
                ))
            else:
                await tx.update_balance(app_id, target_user_id, {"role": role.value})

            return SetRoleResult(app_id=app_id, target_user_id=target_user_id, role=role)

        result = await self.store.run_transaction(_set_role)
        logger.info(f"Supervisor {caller.uid} set role of user {target_user_id} in app {app_id} to {role.value}")
        return result

    async def list_app_users(
        self,
        identity: Optional[CallerIdentity],
        app_id: Any,
        limit: int = 100,
        offset: int = 0,
    ) -> AppUsersResult:
        """List all records of an app, highest balance first."""
        caller = _require_identity(identity)
        app_id = _require_string(app_id, "appId")

        role = await self._effective_role(caller, app_id)
        if not has_permission(role, Permission.CREDITS_VIEW_ALL):
            raise PermissionDenied("Administrator access required")

        users = await self.store.list_balances(app_id, limit=limit, offset=offset)
        return AppUsersResult(app_id=app_id, users=users, limit=limit, offset=offset)

    async def list_ledger(
        self,
        identity: Optional[CallerIdentity],
        app_id: Any,
        user_id: Optional[str] = None,
        source: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> LedgerResult:
        """List ledger entries of an app, newest first.

        Callers may always see their own entries; everything else needs
        the view-all permission.
        """
        caller = _require_identity(identity)
        app_id = _require_string(app_id, "appId")

        ledger_source = None
        if source:
            try:
                ledger_source = LedgerSource(source)
            except ValueError:
                raise InvalidArgument(f"Invalid ledger source: {source}")

        if user_id == caller.uid:
            permission = Permission.CREDITS_VIEW_OWN
        else:
            permission = Permission.CREDITS_VIEW_ALL

        role = await self._effective_role(caller, app_id)
        if not has_permission(role, permission):
            raise PermissionDenied("Administrator access required")

        entries = await self.store.list_ledger(
            app_id,
            user_id=user_id,
            source=ledger_source,
            limit=limit,
            offset=offset,
        )
        return LedgerResult(app_id=app_id, entries=entries, limit=limit, offset=offset)

    async def list_user_apps(self, identity: Optional[CallerIdentity], user_id: Any) -> UserAppsResult:
        """Supervisor-only view of one user's records across all apps."""
        _require_supervisor(identity)
        user_id = _require_string(user_id, "userId")

        apps = await self.store.list_user_balances(user_id)
        return UserAppsResult(user_id=user_id, apps=apps)

    async def _effective_role(self, caller: CallerIdentity, app_id: str) -> Role:
        if caller.is_supervisor:
            return Role.SUPERVISOR
        record = await self.store.get_balance(app_id, caller.uid)
        return get_effective_role(False, record.role if record else None)
