"""
Health Reporter

Append-only observability sink for scan and dispatch attempts.
Writes are best-effort: a failed health write is logged and never fails
the operation being observed.
"""

import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from whale_monitor.db.models import MonitoringHealth
from whale_monitor.core.logging_config import get_logger

logger = get_logger(__name__)

STATUS_OK = "ok"
STATUS_ERROR = "error"

DISPATCH_SERVICE = "alert_dispatcher"
BATCH_SERVICE = "xrpl_monitor"


def scan_service_name(address: str) -> str:
    return f"wallet_monitor_{address}"


def _get_session_local():
    """Lazy import of SessionLocal to avoid circular imports"""
    from whale_monitor.db.session import SessionLocal
    return SessionLocal


class Stopwatch:
    """Elapsed wall time in whole milliseconds"""

    def __init__(self):
        self._start = time.perf_counter()

    @property
    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self._start) * 1000)


class HealthReporter:
    """
    Records one MonitoringHealth row per observed attempt

    Uses its own session so that a rolled-back pipeline transaction does
    not take the health entry with it.
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self):
        """Lazy-loaded session factory"""
        if self._session_factory is None:
            self._session_factory = _get_session_local()
        return self._session_factory

    def record(
        self,
        service_name: str,
        status: str,
        response_time_ms: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> None:
        try:
            with self.session_factory() as db:
                db.add(MonitoringHealth(
                    service_name=service_name,
                    status=status,
                    response_time_ms=response_time_ms,
                    error_message=error_message[:1000] if error_message else None,
                ))
                db.commit()
        except Exception as e:
            logger.warning("Could not record health for %s: %s", service_name, e)

    def ok(self, service_name: str, response_time_ms: Optional[int] = None) -> None:
        self.record(service_name, STATUS_OK, response_time_ms)

    def error(self, service_name: str, error_message: str, response_time_ms: Optional[int] = None) -> None:
        self.record(service_name, STATUS_ERROR, response_time_ms, error_message)

    @contextmanager
    def track(self, service_name: str) -> Iterator[Stopwatch]:
        """
        Time a block and record ok/error depending on whether it raised

        Usage:
            with health.track("alert_dispatcher"):
                await send(...)
        """
        watch = Stopwatch()
        try:
            yield watch
        except Exception as e:
            self.error(service_name, str(e) or type(e).__name__, watch.elapsed_ms)
            raise
        self.ok(service_name, watch.elapsed_ms)

    def recent(self, limit: int = 20, service_name: Optional[str] = None) -> List[MonitoringHealth]:
        with self.session_factory() as db:
            query = select(MonitoringHealth).order_by(MonitoringHealth.last_check_at.desc(), MonitoringHealth.id.desc())
            if service_name:
                query = query.where(MonitoringHealth.service_name == service_name)
            rows = list(db.execute(query.limit(limit)).scalars())
            db.expunge_all()
            return rows

    def latest_by_service(self) -> Dict[str, MonitoringHealth]:
        """Most recent entry of every service"""
        with self.session_factory() as db:
            latest_ids = (
                select(func.max(MonitoringHealth.id))
                .group_by(MonitoringHealth.service_name)
            )
            rows = db.execute(
                select(MonitoringHealth).where(MonitoringHealth.id.in_(latest_ids))
            ).scalars().all()
            db.expunge_all()
            return {row.service_name: row for row in rows}
