"""
Authentication seams.

Provides FastAPI dependencies for:
- Resolving the current member (session resolution happens upstream at the
  gateway, which forwards the resolved member id)
- Verifying the shared-secret bearer token on scheduled trigger endpoints
"""
import hmac
import logging
import time
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from core.config import settings
from core.exceptions import ForbiddenError, UnauthorizedError

logger = logging.getLogger(__name__)

# Use auto_error=False to handle missing credentials manually and return 401 (not 403)
security = HTTPBearer(auto_error=False)

MEMBER_ID_HEADER = "X-Member-Id"


def get_current_member_id(
    x_member_id: Optional[str] = Header(default=None, alias=MEMBER_ID_HEADER),
) -> UUID:
    """
    Get the member id resolved by the upstream session layer.

    Raises UnauthorizedError if the header is missing or malformed.
    """
    if not x_member_id:
        raise UnauthorizedError("Not authenticated")
    try:
        return UUID(x_member_id)
    except ValueError:
        raise UnauthorizedError("Invalid member ID format")


def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> None:
    """
    Require `Authorization: Bearer <CRON_SECRET>` on scheduled triggers.

    Without a configured secret the trigger is refused in production and
    left open (with a warning) everywhere else.
    """
    secret = settings.CRON_SECRET
    if not secret:
        if settings.ENVIRONMENT == "production":
            logger.error("CRON_SECRET not configured in production")
            raise ForbiddenError("CRON_SECRET not configured")
        logger.warning("CRON_SECRET not set - cron endpoint accessible without auth")
        return

    if not credentials or not hmac.compare_digest(
        credentials.credentials.encode("utf-8"), secret.encode("utf-8")
    ):
        raise UnauthorizedError("Invalid authorization")


def verify_trigger_freshness(
    x_cron_time: Optional[str] = Header(default=None, alias="X-Cron-Time"),
) -> None:
    """
    Reject replayed triggers.

    The header is optional; when present it must be epoch milliseconds
    within CRON_MAX_CLOCK_SKEW_S of the server clock.
    """
    if x_cron_time is None:
        return
    try:
        sent_ms = int(x_cron_time)
    except ValueError:
        raise UnauthorizedError("Invalid request timestamp")

    skew_ms = abs(int(time.time() * 1000) - sent_ms)
    if skew_ms > settings.CRON_MAX_CLOCK_SKEW_S * 1000:
        raise UnauthorizedError("Request timestamp too old")
