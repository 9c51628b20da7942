"""
Security Module

Admin bearer-token check and Telegram webhook secret verification.
Both use constant-time comparison.
"""

import hmac
from typing import Optional

from fastapi import HTTPException

from whale_monitor.core.config import settings
from whale_monitor.core.logging_config import get_logger

logger = get_logger()

# Header Telegram sends when setWebhook was called with secret_token
TELEGRAM_SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


def verify_admin_authorization(authorization: Optional[str], admin_token: Optional[str] = None) -> None:
    """
    Validate an "Authorization: Bearer <token>" header

    Args:
        authorization: Raw header value
        admin_token: Expected token (defaults to settings.ADMIN_TOKEN)

    Raises:
        HTTPException(403): If the header does not carry the admin token
    """
    expected_header = f"Bearer {admin_token or settings.ADMIN_TOKEN}"

    if not authorization or not hmac.compare_digest(authorization, expected_header):
        logger.warning("Unauthorized admin access attempt")
        raise HTTPException(
            status_code=403,
            detail="Access denied"
        )


def verify_webhook_secret(received: Optional[str], expected: Optional[str] = None) -> None:
    """
    Validate the Telegram webhook secret header

    When no secret is configured every request is accepted (development).

    Raises:
        HTTPException(401): If the secret is configured and does not match
    """
    expected = expected if expected is not None else settings.TELEGRAM_WEBHOOK_SECRET
    if not expected:
        return

    if not received or not hmac.compare_digest(received, expected):
        logger.warning("Rejected Telegram webhook call with invalid secret")
        raise HTTPException(
            status_code=401,
            detail="Invalid webhook secret"
        )


def mask_token(token: Optional[str]) -> str:
    """Render a credential for logs without leaking it"""
    if not token:
        return "<unset>"
    if len(token) <= 8:
        return "****"
    return f"{token[:4]}...{token[-4:]}"
