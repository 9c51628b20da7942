"""
Scan Orchestrator

Drives scanner -> classifier -> alert generator for one wallet
(monitor_single) or for every active wallet (monitor_all).

monitor_all collects one result per wallet: a wallet whose scan fails is
recorded as a failure and the batch carries on with the others.
"""

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from whale_monitor.core.config import settings
from whale_monitor.core.exceptions import MonitorError, StoreUnavailable, WalletNotFound
from whale_monitor.core.logging_config import get_logger
from whale_monitor.db.models import MonitoredWallet
from whale_monitor.services import wallets as wallet_store
from whale_monitor.services.alerts import AlertGenerator
from whale_monitor.services.classifier import Thresholds, classify
from whale_monitor.services.dispatcher import AlertDispatcher, DispatchSummary, get_dispatcher
from whale_monitor.services.health import BATCH_SERVICE, HealthReporter, Stopwatch
from whale_monitor.services.registry import AddressRegistry, default_registry
from whale_monitor.xrpl.client import XrplClient, get_xrpl_client
from whale_monitor.xrpl.scanner import LedgerScanner

logger = get_logger(__name__)


@dataclass
class WalletScanResult:
    address: str
    owner_name: Optional[str] = None
    new_transactions: int = 0
    alerts_created: int = 0
    alert_ids: List[int] = field(default_factory=list)
    last_ledger_index: Optional[int] = None
    balance: Optional[Decimal] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "address": self.address,
            "owner_name": self.owner_name,
            "new_transactions": self.new_transactions,
            "alerts_created": self.alerts_created,
            "alert_ids": self.alert_ids,
            "last_ledger_index": self.last_ledger_index,
        }
        if self.balance is not None:
            data["balance"] = str(self.balance)
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class BatchResult:
    results: List[WalletScanResult] = field(default_factory=list)
    skipped_count: int = 0
    cancelled: bool = False
    dispatch: Optional[DispatchSummary] = None
    dispatch_error: Optional[str] = None

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "results": [r.to_dict() for r in self.results],
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
            "cancelled": self.cancelled,
        }
        if self.dispatch is not None:
            data["dispatch"] = self.dispatch.to_dict()
        if self.dispatch_error is not None:
            data["dispatch_error"] = self.dispatch_error
        return data


def _get_session_local():
    """Lazy import of SessionLocal to avoid circular imports"""
    from whale_monitor.db.session import SessionLocal
    return SessionLocal


class ScanOrchestrator:
    """
    Entry point of the pipeline for the scheduler and the admin routes

    Usage:
        orchestrator = ScanOrchestrator()
        batch = await orchestrator.monitor_all()
    """

    def __init__(
        self,
        client: Optional[XrplClient] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        health: Optional[HealthReporter] = None,
        dispatcher: Optional[AlertDispatcher] = None,
        registry: AddressRegistry = default_registry,
        thresholds: Optional[Thresholds] = None,
        max_concurrency: Optional[int] = None,
        dispatch_after_scan: Optional[bool] = None,
        backfill_on_first_scan: Optional[bool] = None,
    ):
        self.client = client
        self._session_factory = session_factory
        self.health = health or HealthReporter(session_factory)
        self._dispatcher = dispatcher
        self.registry = registry
        self.thresholds = thresholds or Thresholds.from_settings()
        self.max_concurrency = max(1, max_concurrency or settings.MONITOR_MAX_CONCURRENCY)
        self.dispatch_after_scan = (
            settings.MONITOR_DISPATCH_AFTER_SCAN if dispatch_after_scan is None else dispatch_after_scan
        )
        self.backfill_on_first_scan = (
            settings.MONITOR_BACKFILL_ON_FIRST_SCAN if backfill_on_first_scan is None else backfill_on_first_scan
        )
        self.generator = AlertGenerator(session_factory, self.thresholds)
        self._scanner: Optional[LedgerScanner] = None

    @property
    def session_factory(self):
        if self._session_factory is None:
            self._session_factory = _get_session_local()
        return self._session_factory

    @property
    def dispatcher(self) -> AlertDispatcher:
        if self._dispatcher is None:
            self._dispatcher = get_dispatcher()
        return self._dispatcher

    async def _get_scanner(self) -> LedgerScanner:
        if self._scanner is None:
            if self.client is None:
                self.client = await get_xrpl_client()
            self._scanner = LedgerScanner(
                self.client,
                session_factory=self._session_factory,
                health=self.health,
                registry=self.registry,
                backfill_on_first_scan=self.backfill_on_first_scan,
            )
        return self._scanner

    def _load_wallet(self, address: str, owner_name: Optional[str]) -> MonitoredWallet:
        try:
            with self.session_factory() as db:
                wallet = wallet_store.get_wallet(db, address)
                if wallet is None:
                    if not owner_name:
                        raise WalletNotFound(address)
                    wallet, _ = wallet_store.onboard_wallet(db, address, owner_name)
                    db.commit()
                    db.refresh(wallet)
                db.expunge(wallet)
                return wallet
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Could not load wallet: {e}", address=address) from e

    async def _run_wallet(self, wallet: MonitoredWallet) -> WalletScanResult:
        """scan -> classify -> generate for one wallet"""
        scanner = await self._get_scanner()
        alert_ids: List[int] = []

        def generate_alerts(transactions) -> None:
            # Ascending ledger order; already-alerted transactions are suppressed
            for tx in transactions:
                classified = classify(
                    tx,
                    wallet_threshold=wallet.alert_threshold,
                    wallet_owner=wallet.owner_name,
                    registry=self.registry,
                    thresholds=self.thresholds,
                )
                outcome = self.generator.generate(classified)
                if outcome.created:
                    alert_ids.append(outcome.alert_id)

        # The cursor only moves once every alert of the batch is stored
        scan = await scanner.scan(wallet, on_batch=generate_alerts)

        return WalletScanResult(
            address=wallet.address,
            owner_name=wallet.owner_name,
            new_transactions=scan.recorded_count,
            alerts_created=len(alert_ids),
            alert_ids=alert_ids,
            last_ledger_index=scan.last_ledger_index,
            error=scan.error,
        )

    async def monitor_single(
        self,
        address: str,
        owner_name: Optional[str] = None,
        include_balance: bool = True,
    ) -> WalletScanResult:
        """
        Scan one wallet

        An unknown address is onboarded when owner_name is given.

        Raises:
            WalletNotFound: Address is not monitored and no owner_name given
            StoreUnavailable: The wallet or its batch could not be stored
        """
        wallet = self._load_wallet(address, owner_name)
        result = await self._run_wallet(wallet)

        if include_balance and result.ok:
            try:
                result.balance = await self.client.get_balance(address)
            except MonitorError as e:
                logger.debug("Balance of %s unavailable: %s", address, e.message)

        return result

    async def monitor_all(self, cancel_event: Optional[asyncio.Event] = None) -> BatchResult:
        """
        Scan every active wallet

        Wallets run under a semaphore of max_concurrency. Cancellation is
        checked before a wallet starts; a wallet already scanning finishes.

        Raises:
            StoreUnavailable: The wallet list could not be read
        """
        watch = Stopwatch()
        try:
            with self.session_factory() as db:
                active = wallet_store.list_wallets(db, active_only=True)
                db.expunge_all()
        except SQLAlchemyError as e:
            self.health.error(BATCH_SERVICE, f"Could not list wallets: {e}", watch.elapsed_ms)
            raise StoreUnavailable(f"Could not list wallets: {e}") from e

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(wallet: MonitoredWallet) -> Optional[WalletScanResult]:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return None
                try:
                    return await self._run_wallet(wallet)
                except MonitorError as e:
                    logger.warning("Scan of %s failed: %s", wallet.address, e.message)
                    return WalletScanResult(wallet.address, wallet.owner_name, error=e.message)
                except Exception as e:
                    logger.error("Unexpected error scanning %s: %s", wallet.address, e, exc_info=True)
                    return WalletScanResult(wallet.address, wallet.owner_name, error=str(e) or type(e).__name__)

        outcomes = await asyncio.gather(*(run(wallet) for wallet in active))

        batch = BatchResult(results=[o for o in outcomes if o is not None])
        batch.skipped_count = sum(1 for o in outcomes if o is None)
        batch.cancelled = batch.skipped_count > 0

        logger.info(
            "Batch scan finished: %d ok, %d failed, %d skipped",
            batch.success_count, batch.failure_count, batch.skipped_count,
        )

        if batch.results and batch.success_count == 0:
            message = f"All {batch.failure_count} wallet scans failed: {batch.results[0].error}"
            self.health.error(BATCH_SERVICE, message, watch.elapsed_ms)
            await self.dispatcher.send_system_alert(message, severity="critical")
        else:
            self.health.ok(BATCH_SERVICE, watch.elapsed_ms)

        if self.dispatch_after_scan and not batch.cancelled:
            try:
                batch.dispatch = await self.dispatch_pending()
            except MonitorError as e:
                logger.error("Dispatch after scan failed: %s", e.message)
                batch.dispatch_error = e.message

        return batch

    async def dispatch_pending(self, limit: Optional[int] = None) -> DispatchSummary:
        return await self.dispatcher.dispatch_pending(limit)


# Singleton instance for convenience
_orchestrator: Optional[ScanOrchestrator] = None


def get_orchestrator() -> ScanOrchestrator:
    """Get global orchestrator instance"""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ScanOrchestrator()
    return _orchestrator
