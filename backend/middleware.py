from fastapi import Header, Request
from typing import Optional
import logging
from auth import identity_from_token
from toolbox.models.identity import CallerIdentity
from toolbox.services.credit_service import CreditService

logger = logging.getLogger(__name__)

async def get_caller_identity(authorization: Optional[str] = Header(None)) -> Optional[CallerIdentity]:
    """Extract the caller identity from the bearer token.

    Returns None when the header is missing or the token is invalid; the
    credit service decides whether that is an error.
    """
    if not authorization or not authorization.startswith("Bearer "):
        return None

    token = authorization.split(" ", 1)[1].strip()
    identity = identity_from_token(token)

    if identity is None:
        logger.debug("Rejected invalid or expired bearer token")

    return identity

def get_credit_service(request: Request) -> CreditService:
    """Credit service built at startup (see server lifespan)."""
    return request.app.state.credit_service
