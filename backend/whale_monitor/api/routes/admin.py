"""
Admin API Routes

Wallet administration, manual scan triggers and health inspection.
Requires admin authentication.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from whale_monitor.api.deps import get_admin_user, get_health_reporter, get_scan_orchestrator
from whale_monitor.core.exceptions import (
    InvalidThresholdException,
    UpstreamUnavailable,
    WalletAlreadyMonitoredException,
    WalletNotFound,
)
from whale_monitor.core.logging_config import get_logger
from whale_monitor.core.rate_limit import limiter
from whale_monitor.db.session import get_db
from whale_monitor.services import wallets as wallet_store
from whale_monitor.services.health import HealthReporter
from whale_monitor.services.orchestrator import ScanOrchestrator

router = APIRouter(
    prefix="/admin",
    tags=["admin"]
)

logger = get_logger()

# Classic XRPL address: "r" + base58 (ripple alphabet), 25-35 chars
ADDRESS_PATTERN = r"^r[1-9A-HJ-NP-Za-km-z]{24,34}$"


class CreateWalletRequest(BaseModel):
    """Request body for onboarding a wallet"""
    address: str = Field(..., pattern=ADDRESS_PATTERN)
    owner_name: str = Field(..., min_length=1, max_length=255)
    alert_threshold: Optional[Decimal] = None
    is_active: bool = True

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "address": "rUzSNPtxrmeSTpnjsvaTuQvF2SQFPFSvLn",
                "owner_name": "Arthur Britto",
                "alert_threshold": 25000,
            }
        }
    )


class UpdateWalletRequest(BaseModel):
    """Partial update; alert_threshold=null clears the override"""
    is_active: Optional[bool] = None
    alert_threshold: Optional[Decimal] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "is_active": False
            }
        }
    )


class MonitorWalletRequest(BaseModel):
    """Optional body of a single-wallet scan; owner_name onboards unknown addresses"""
    owner_name: Optional[str] = Field(None, min_length=1, max_length=255)


class WalletResponse(BaseModel):
    address: str
    owner_name: str
    is_active: bool
    alert_threshold: Optional[Decimal]
    last_ledger_index: Optional[int]
    last_checked_at: Optional[datetime]
    last_error: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class HealthEntryResponse(BaseModel):
    service_name: str
    status: str
    last_check_at: datetime
    error_message: Optional[str]
    response_time_ms: Optional[int]

    model_config = ConfigDict(from_attributes=True)


def _check_threshold(threshold: Optional[Decimal]) -> None:
    if threshold is not None and threshold <= 0:
        raise InvalidThresholdException(threshold)


@router.get("/wallets", response_model=List[WalletResponse])
@limiter.limit("60/minute")
async def list_wallets(
    request: Request,
    active_only: bool = False,
    db: Session = Depends(get_db),
    is_admin: bool = Depends(get_admin_user)
) -> List[WalletResponse]:
    """List monitored wallets with their cursor and last error"""
    return [WalletResponse.model_validate(w) for w in wallet_store.list_wallets(db, active_only=active_only)]


@router.post("/wallets", response_model=WalletResponse, status_code=201)
@limiter.limit("30/minute")
async def create_wallet(
    request: Request,
    wallet_request: CreateWalletRequest,
    db: Session = Depends(get_db),
    is_admin: bool = Depends(get_admin_user)
) -> WalletResponse:
    """
    Onboard a wallet

    Raises:
        409: Address already monitored
        400: Non-positive threshold
    """
    _check_threshold(wallet_request.alert_threshold)

    wallet, created = wallet_store.onboard_wallet(
        db,
        wallet_request.address,
        wallet_request.owner_name,
        alert_threshold=wallet_request.alert_threshold,
        is_active=wallet_request.is_active,
    )
    if not created:
        raise WalletAlreadyMonitoredException(wallet_request.address)
    db.commit()
    db.refresh(wallet)

    logger.info("Wallet onboarded via admin API", extra={"address": wallet.address, "owner": wallet.owner_name})
    return WalletResponse.model_validate(wallet)


@router.patch("/wallets/{address}", response_model=WalletResponse)
@limiter.limit("30/minute")
async def update_wallet(
    request: Request,
    address: str,
    update_request: UpdateWalletRequest,
    db: Session = Depends(get_db),
    is_admin: bool = Depends(get_admin_user)
) -> WalletResponse:
    """
    Toggle monitoring or change the alert threshold

    Deactivating keeps the wallet's transactions and alerts.
    """
    wallet = wallet_store.get_wallet(db, address)
    if wallet is None:
        raise WalletNotFound(address)

    if update_request.is_active is not None:
        wallet_store.set_active(db, wallet, update_request.is_active)

    if "alert_threshold" in update_request.model_fields_set:
        _check_threshold(update_request.alert_threshold)
        wallet_store.set_threshold(db, wallet, update_request.alert_threshold)

    db.commit()
    db.refresh(wallet)
    return WalletResponse.model_validate(wallet)


@router.post("/monitor/wallets/{address}")
@limiter.limit("30/minute")
async def monitor_wallet(
    request: Request,
    address: str,
    monitor_request: Optional[MonitorWalletRequest] = None,
    orchestrator: ScanOrchestrator = Depends(get_scan_orchestrator),
    is_admin: bool = Depends(get_admin_user)
) -> Dict[str, Any]:
    """
    Scan one wallet now

    Raises:
        404: Unknown address and no owner_name given
        502: Ledger source unavailable (payload carries the address)
    """
    owner_name = monitor_request.owner_name if monitor_request else None
    result = await orchestrator.monitor_single(address, owner_name=owner_name)
    if result.error:
        raise UpstreamUnavailable(result.error, address=address)
    return result.to_dict()


@router.post("/monitor/all")
@limiter.limit("10/minute")
async def monitor_all(
    request: Request,
    orchestrator: ScanOrchestrator = Depends(get_scan_orchestrator),
    is_admin: bool = Depends(get_admin_user)
) -> Dict[str, Any]:
    """
    Scan every active wallet now

    Per-wallet failures are reported in results; only a store failure
    for the whole batch is an error (503).
    """
    batch = await orchestrator.monitor_all()
    return batch.to_dict()


@router.get("/monitor/health")
@limiter.limit("60/minute")
async def monitor_health(
    request: Request,
    limit: int = 20,
    service_name: Optional[str] = None,
    health: HealthReporter = Depends(get_health_reporter),
    db: Session = Depends(get_db),
    is_admin: bool = Depends(get_admin_user)
) -> Dict[str, Any]:
    """Latest health entry per service, recent entries and wallets with errors"""
    latest = health.latest_by_service()
    recent = health.recent(limit=min(max(limit, 1), 200), service_name=service_name)
    failing = [w for w in wallet_store.list_wallets(db) if w.last_error]

    return {
        "services": {
            name: HealthEntryResponse.model_validate(entry).model_dump(mode="json")
            for name, entry in sorted(latest.items())
        },
        "recent": [HealthEntryResponse.model_validate(e).model_dump(mode="json") for e in recent],
        "wallet_errors": [
            {"address": w.address, "owner_name": w.owner_name, "last_error": w.last_error}
            for w in failing
        ],
    }
