"""
Alert API Routes

Listing whale alerts and manual dispatch. Requires admin authentication.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.orm import Session

from whale_monitor.api.deps import get_admin_user, get_alert_dispatcher
from whale_monitor.core.rate_limit import limiter
from whale_monitor.db.models import WhaleAlert
from whale_monitor.db.session import get_db
from whale_monitor.services.dispatcher import AlertDispatcher

router = APIRouter(
    prefix="/admin/alerts",
    tags=["alerts"]
)


class WhaleAlertResponse(BaseModel):
    id: int
    wallet_address: str
    owner_name: str
    transaction_hash: str
    amount: Decimal
    transaction_type: str
    alert_type: str
    alert_category: str
    exchange_name: Optional[str]
    destination_tag: Optional[str]
    is_sent: bool
    sent_at: Optional[datetime]
    channel_used: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


@router.get("", response_model=List[WhaleAlertResponse])
@limiter.limit("60/minute")
async def list_alerts(
    request: Request,
    is_sent: Optional[bool] = None,
    alert_type: Optional[str] = None,
    wallet_address: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    is_admin: bool = Depends(get_admin_user)
) -> List[WhaleAlertResponse]:
    """Newest alerts first, optionally filtered by state, tier or wallet"""
    query = select(WhaleAlert).order_by(WhaleAlert.created_at.desc(), WhaleAlert.id.desc())
    if is_sent is not None:
        query = query.where(WhaleAlert.is_sent.is_(is_sent))
    if alert_type:
        query = query.where(WhaleAlert.alert_type == alert_type)
    if wallet_address:
        query = query.where(WhaleAlert.wallet_address == wallet_address)

    alerts = db.execute(query.limit(limit)).scalars().all()
    return [WhaleAlertResponse.model_validate(alert) for alert in alerts]


@router.post("/dispatch-pending")
@limiter.limit("10/minute")
async def dispatch_pending(
    request: Request,
    limit: Optional[int] = Query(None, ge=1, le=500),
    dispatcher: AlertDispatcher = Depends(get_alert_dispatcher),
    is_admin: bool = Depends(get_admin_user)
) -> Dict[str, Any]:
    """Dispatch pending alerts oldest first; per-alert failures are reported, not raised"""
    summary = await dispatcher.dispatch_pending(limit)
    return summary.to_dict()


@router.post("/{alert_id}/dispatch")
@limiter.limit("30/minute")
async def dispatch_alert(
    request: Request,
    alert_id: int,
    dispatcher: AlertDispatcher = Depends(get_alert_dispatcher),
    is_admin: bool = Depends(get_admin_user)
) -> Dict[str, Any]:
    """
    Dispatch one alert

    Raises:
        404: Unknown alert
        500: Bot token or tier channel not configured
        502: Telegram send failed (alert stays pending)
    """
    outcome = await dispatcher.dispatch(alert_id)
    return outcome.to_dict()
