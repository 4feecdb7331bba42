"""Toolbox Admin Routes

Endpoints:
- POST /api/admin/credits/adjust - Supervisor balance correction
- POST /api/admin/apps/role - Supervisor app role assignment
- GET /api/admin/credits/users/{user_id} - One user's records across all apps
- GET /api/admin/credits/{app_id}/users - All credit records of an app

Supervisor status comes only from the token claim, never from stored data.
"""

from fastapi import APIRouter, Body, Depends, Query
from typing import Optional, Dict, Any
import logging

from middleware import get_caller_identity, get_credit_service
from toolbox.models.credits import AdjustResult, SetRoleResult, AppUsersResult, UserAppsResult
from toolbox.models.identity import CallerIdentity
from toolbox.services.credit_service import CreditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Credits Admin"])


@router.post("/credits/adjust", response_model=AdjustResult)
async def admin_adjust_credits(
    payload: Optional[Dict[str, Any]] = Body(None),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
    service: CreditService = Depends(get_credit_service),
):
    """Adjust a user's credits by a signed delta. Floors at zero."""
    payload = payload or {}
    return await service.admin_adjust(
        identity,
        payload.get("appId"),
        payload.get("targetUserId"),
        payload.get("delta"),
        reason=payload.get("reason"),
    )


@router.post("/apps/role", response_model=SetRoleResult)
async def set_app_role(
    payload: Optional[Dict[str, Any]] = Body(None),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
    service: CreditService = Depends(get_credit_service),
):
    """Set a user's role (`user` or `administrator`) for one app."""
    payload = payload or {}
    return await service.set_app_role(
        identity,
        payload.get("appId"),
        payload.get("targetUserId"),
        payload.get("role"),
    )


@router.get("/credits/users/{user_id}", response_model=UserAppsResult, response_model_exclude_none=True)
async def list_user_apps(
    user_id: str,
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
    service: CreditService = Depends(get_credit_service),
):
    """List a user's credit records for every app they use. Supervisor only."""
    return await service.list_user_apps(identity, user_id)


@router.get("/credits/{app_id}/users", response_model=AppUsersResult, response_model_exclude_none=True)
async def list_app_users(
    app_id: str,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
    service: CreditService = Depends(get_credit_service),
):
    """List credit records of an app, highest balance first."""
    return await service.list_app_users(identity, app_id, limit=limit, offset=offset)
