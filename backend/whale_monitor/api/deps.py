"""
API Dependencies

FastAPI dependencies for admin authentication and pipeline services
"""

from typing import Optional

from fastapi import Header

from whale_monitor.core.security import verify_admin_authorization
from whale_monitor.services.dispatcher import AlertDispatcher, get_dispatcher
from whale_monitor.services.health import HealthReporter
from whale_monitor.services.orchestrator import ScanOrchestrator, get_orchestrator


def get_admin_user(authorization: Optional[str] = Header(None)) -> bool:
    """
    Admin authentication dependency

    Usage in endpoints:
        @router.post("/admin/monitor/all")
        async def trigger(is_admin: bool = Depends(get_admin_user)):
            ...

    Args:
        authorization: "Bearer <ADMIN_TOKEN>" header

    Returns:
        True if authenticated as admin

    Raises:
        HTTPException(403): Missing or wrong token
    """
    verify_admin_authorization(authorization)
    return True


def get_scan_orchestrator() -> ScanOrchestrator:
    return get_orchestrator()


def get_alert_dispatcher() -> AlertDispatcher:
    return get_dispatcher()


def get_health_reporter() -> HealthReporter:
    return HealthReporter()
