"""
Standardized Exception Handling

Two layers live here:

1. Pipeline errors (MonitorError and subclasses) raised by the scanner,
   dispatcher and orchestrator. They carry the affected wallet address when
   the failure is isolable.
2. API errors with structured response format:
{
    "detail": "Human-readable message",  // Backward compat
    "error": {
        "code": "ERROR_CODE",
        "message": "Human-readable message",
        "details": {...}
    }
}
"""

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from typing import Any, Dict, Optional
from whale_monitor.core.logging_config import get_logger

logger = get_logger()


# ============================================================================
# Pipeline errors
# ============================================================================

class MonitorError(Exception):
    """Base class for monitoring pipeline failures"""

    code = "MONITOR_ERROR"
    status_code = 500

    def __init__(self, message: str, address: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.address = address


class UpstreamUnavailable(MonitorError):
    """Ledger API unreachable or rate-limited after all retries"""

    code = "UPSTREAM_UNAVAILABLE"
    status_code = 502


class TransportFailure(MonitorError):
    """Notification send failed; the alert stays pending"""

    code = "TRANSPORT_FAILURE"
    status_code = 502


class StoreUnavailable(MonitorError):
    """Database unreachable or a write failed"""

    code = "STORE_UNAVAILABLE"
    status_code = 503


class ConfigurationMissing(MonitorError):
    """Required credential or channel id is not configured"""

    code = "CONFIGURATION_MISSING"
    status_code = 500


class WalletNotFound(MonitorError):
    code = "WALLET_NOT_FOUND"
    status_code = 404

    def __init__(self, address: str):
        super().__init__(f"Wallet {address} is not monitored", address=address)


class AlertNotFound(MonitorError):
    code = "ALERT_NOT_FOUND"
    status_code = 404

    def __init__(self, alert_id: int):
        super().__init__(f"Whale alert with ID {alert_id} does not exist")
        self.alert_id = alert_id


# ============================================================================
# API errors
# ============================================================================

class APIException(HTTPException):
    """
    Base exception for API errors with structured response

    Usage:
        raise APIException(404, "WALLET_NOT_FOUND", "Wallet is not monitored",
                          {"address": "r..."})
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}

        # Create structured error response with backward compatibility
        error_detail = {
            "detail": message,
            "error": {
                "code": code,
                "message": message,
            }
        }

        if details:
            error_detail["error"]["details"] = details

        super().__init__(status_code=status_code, detail=error_detail)


class WalletAlreadyMonitoredException(APIException):
    """Wallet onboarding conflict"""
    def __init__(self, address: str):
        super().__init__(
            409,
            "WALLET_ALREADY_MONITORED",
            f"Wallet {address} is already monitored",
            {"address": address}
        )


class InvalidThresholdException(APIException):
    """Alert threshold must be positive"""
    def __init__(self, threshold: Any):
        super().__init__(
            400,
            "INVALID_THRESHOLD",
            "Alert threshold must be greater than zero",
            {"alert_threshold": str(threshold)}
        )


# Exception handlers

async def api_exception_handler(request: Request, exc: APIException):
    """
    Global exception handler for APIException

    Logs the error and returns structured JSON response
    """
    logger.warning(
        f"API Exception: {exc.code}",
        extra={
            "code": exc.code,
            "error_message": exc.message,
            "details": exc.details,
            "status_code": exc.status_code,
            "path": request.url.path,
            "method": request.method
        }
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.detail
    )


async def monitor_exception_handler(request: Request, exc: MonitorError):
    """
    Handler for pipeline errors that escape a route

    Isolable failures carry the affected address in details.
    """
    details: Dict[str, Any] = {}
    if exc.address:
        details["address"] = exc.address

    content: Dict[str, Any] = {
        "detail": exc.message,
        "error": {
            "code": exc.code,
            "message": exc.message,
        }
    }
    if details:
        content["error"]["details"] = details

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Monitor Exception: {exc.code}",
        extra={
            "code": exc.code,
            "error_message": exc.message,
            "status_code": exc.status_code,
            "path": request.url.path,
            "method": request.method
        }
    )

    return JSONResponse(status_code=exc.status_code, content=content)


# Generic HTTP exception handler for consistency

async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Handler for standard HTTPException to ensure consistent format
    """
    # If detail is already structured (dict), use as-is
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = {
            "detail": str(exc.detail),
            "error": {
                "code": "HTTP_ERROR",
                "message": str(exc.detail)
            }
        }

    logger.warning(
        f"HTTP Exception: {exc.status_code}",
        extra={
            "status_code": exc.status_code,
            "detail": exc.detail,
            "path": request.url.path,
            "method": request.method
        }
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=content
    )
