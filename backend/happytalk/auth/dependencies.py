"""FastAPI dependency guarding privileged message operations.

Token issuance and session validation belong to the external auth service.
This module only decides whether a presented bearer token is one of the
configured admin tokens.
"""
import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException

from happytalk.config import get_config

logger = logging.getLogger(__name__)


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[len("Bearer "):].strip() or None


async def require_admin(authorization: Optional[str] = Header(None)) -> str:
    """Return the caller's token if it is privileged.

    Raises:
        HTTPException: 401 without a bearer token, 403 if not an admin.
    """
    token = _bearer(authorization)
    if token is None:
        raise HTTPException(status_code=401, detail="No token provided")
    admin_tokens = get_config().secrets.admin.tokens
    if not any(hmac.compare_digest(token, t) for t in admin_tokens):
        logger.warning("[Auth] Rejected privileged request with non-admin token")
        raise HTTPException(status_code=403, detail="Admin privileges required")
    return token
