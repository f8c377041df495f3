"""
Shared-secret verification for cron callers

When CRON_SECRET_KEY is unset the automatic-execution endpoint is open. That is the
development-mode fallback; config.py warns about it at startup.
"""

import hmac
import logging
from typing import Optional

from fastapi import Header

from . import config
from .exceptions import CronAuthError

logger = logging.getLogger(__name__)


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


async def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """FastAPI dependency gating cron-triggered endpoints"""
    cron_secret = config.CRON_SECRET_KEY

    if not cron_secret:
        logger.debug("CRON_SECRET_KEY not configured - allowing request")
        return

    if not constant_time_compare(authorization or "", f"Bearer {cron_secret}"):
        logger.warning("🔒 Rejected cron call with missing or invalid bearer secret")
        raise CronAuthError("Invalid or missing cron secret")
