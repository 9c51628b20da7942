"""
Unit Tests for whale_monitor/core/security.py

Admin bearer token and Telegram webhook secret checks
"""

import os

import pytest
from fastapi import HTTPException

from whale_monitor.core.security import mask_token, verify_admin_authorization, verify_webhook_secret


@pytest.mark.unit
@pytest.mark.security
def test_admin_authorization_success():
    """Test valid bearer token passes"""
    verify_admin_authorization("Bearer secret-token", admin_token="secret-token")


@pytest.mark.unit
@pytest.mark.security
@pytest.mark.parametrize("header", [None, "", "secret-token", "Bearer wrong", "bearer secret-token"])
def test_admin_authorization_rejected(header):
    """Test missing, malformed and wrong tokens are rejected with 403"""
    with pytest.raises(HTTPException) as exc_info:
        verify_admin_authorization(header, admin_token="secret-token")

    assert exc_info.value.status_code == 403
    assert exc_info.value.detail == "Access denied"


@pytest.mark.unit
@pytest.mark.security
def test_admin_authorization_defaults_to_settings():
    """Test the configured ADMIN_TOKEN is used when none is passed"""
    verify_admin_authorization(f"Bearer {os.environ['ADMIN_TOKEN']}")


@pytest.mark.unit
@pytest.mark.security
def test_webhook_secret_checked_when_configured():
    verify_webhook_secret("s3cret", expected="s3cret")

    with pytest.raises(HTTPException) as exc_info:
        verify_webhook_secret("nope", expected="s3cret")
    assert exc_info.value.status_code == 401

    with pytest.raises(HTTPException):
        verify_webhook_secret(None, expected="s3cret")


@pytest.mark.unit
@pytest.mark.security
def test_webhook_secret_open_when_unset():
    """Test no configured secret accepts any request"""
    verify_webhook_secret(None, expected="")


@pytest.mark.unit
@pytest.mark.security
def test_mask_token_never_leaks():
    token = "123456789:AAHdqTcvCH1vGWJxfSeofSAs0K5PALDsaw"
    masked = mask_token(token)

    assert token not in masked
    assert masked.startswith("1234")
    assert mask_token(None) == "<unset>"
    assert mask_token("short") == "****"
