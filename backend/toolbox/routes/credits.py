"""Toolbox Credit Routes

Endpoints:
- POST /api/credits/initialize - Create the caller's record for an app
- POST /api/credits/read - Get the caller's credits for an app
- POST /api/credits/consume - Spend credits after a successful action
- GET /api/credits/{app_id}/ledger - Ledger entries (own, or all for admins)

Bodies are taken as raw JSON objects; CreditService validates them so that
authentication failures always win over argument errors.
"""

from fastapi import APIRouter, Body, Depends, Query
from typing import Optional, Dict, Any
import logging

from middleware import get_caller_identity, get_credit_service
from toolbox.models.credits import (
    InitializeResult,
    ReadResult,
    ConsumeResult,
    LedgerResult,
)
from toolbox.models.identity import CallerIdentity
from toolbox.services.credit_service import CreditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/credits", tags=["Credits"])


@router.post("/initialize", response_model=InitializeResult, response_model_exclude_none=True)
async def initialize_app_user(
    payload: Optional[Dict[str, Any]] = Body(None),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
    service: CreditService = Depends(get_credit_service),
):
    """Initialize the caller for an app on first use. Idempotent."""
    payload = payload or {}
    return await service.initialize(identity, payload.get("appId"))


@router.post("/read", response_model=ReadResult)
async def read_credits(
    payload: Optional[Dict[str, Any]] = Body(None),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
    service: CreditService = Depends(get_credit_service),
):
    """Get current credits. `exists` is false when never initialized."""
    payload = payload or {}
    return await service.read(identity, payload.get("appId"))


@router.post("/consume", response_model=ConsumeResult)
async def consume_credits(
    payload: Optional[Dict[str, Any]] = Body(None),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
    service: CreditService = Depends(get_credit_service),
):
    """Deduct credits after a successful app action.

    Call only after the action succeeded; opening a tool costs nothing.
    """
    payload = payload or {}
    return await service.consume(
        identity,
        payload.get("appId"),
        payload.get("amount"),
        reason=payload.get("reason"),
    )


@router.get("/{app_id}/ledger", response_model=LedgerResult)
async def get_ledger(
    app_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    source: Optional[str] = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
    service: CreditService = Depends(get_credit_service),
):
    """Get ledger history for an app."""
    return await service.list_ledger(
        identity,
        app_id,
        user_id=user_id,
        source=source,
        limit=limit,
        offset=offset,
    )
