"""
Pytest Configuration and Fixtures

Shared test fixtures for backend testing
"""

import os

# Settings are read at import time: point everything at the test database
# and keep the background scheduler off before whale_monitor is imported.
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///./test_whale_monitor.db")
os.environ["DATABASE_URL"] = os.environ["TEST_DATABASE_URL"]
os.environ["MONITOR_ENABLED"] = "false"
os.environ["MONITOR_SEED_REGISTRY"] = "false"
os.environ["XRPL_REQUEST_DELAY_SECONDS"] = "0"

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Set

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from whale_monitor.core.exceptions import TransportFailure, UpstreamUnavailable
from whale_monitor.db.models import Base, MonitoredWallet
from whale_monitor.services.classifier import Thresholds
from whale_monitor.services.dispatcher import AlertDispatcher, DispatcherConfig
from whale_monitor.services.health import HealthReporter
from whale_monitor.services.orchestrator import ScanOrchestrator
from whale_monitor.services.registry import AddressRegistry, ExchangeAddressEntry
from whale_monitor.xrpl.client import AccountTxBatch, LedgerTransaction

TEST_DATABASE_URL = os.environ["TEST_DATABASE_URL"]
TEST_DB_FILE = "test_whale_monitor.db"

# Determine if using SQLite
is_sqlite = TEST_DATABASE_URL.startswith("sqlite")

# Create test database engine
if is_sqlite:
    test_engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={
            "check_same_thread": False,
            "timeout": 60,  # Increased timeout for slower systems
        }
    )
    # Enable WAL mode for better concurrency (SQLite only)
    with test_engine.connect() as conn:
        conn.execute(text("PRAGMA journal_mode=WAL"))
        conn.execute(text("PRAGMA busy_timeout=60000"))  # 60 second busy timeout
        conn.commit()
else:
    # PostgreSQL settings
    test_engine = create_engine(
        TEST_DATABASE_URL,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True
    )

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

# Child tables first
TABLES = [
    "notification_attempts",
    "telegram_subscriptions",
    "monitoring_health",
    "whale_alerts",
    "wallet_transactions",
    "wallet_monitoring",
]

WHALE = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"
OTHER = "rPT1Sjq2YGrBMTttX4GZHjKu9dyfzbpAYe"
EXCHANGE = "rN7n7otQDd6FczFgLdSqtcsAUxDkw6fzRH"
EXCHANGE_TAG = "101391685"

CHANNELS = {
    "critical_whales": "-1001",
    "exchange_deposits": "-1002",
    "whale_movements": "-1003",
    "system_alerts": "-1004",
}


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """
    Set up test database tables once for entire test session

    autouse=True means this runs automatically before any tests
    """
    # Release the import-time connection before removing its database file
    test_engine.dispose()
    if os.path.exists(TEST_DB_FILE):
        try:
            os.remove(TEST_DB_FILE)
        except PermissionError:
            pass  # File in use, will be cleaned up later

    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)

    # Close all connections
    test_engine.dispose()

    if os.path.exists(TEST_DB_FILE):
        try:
            os.remove(TEST_DB_FILE)
        except PermissionError:
            pass  # File in use, will be cleaned up on next run


@pytest.fixture(autouse=True)
def clean_tables():
    """Empty every table after each test"""
    yield
    with TestingSessionLocal() as db:
        for table in TABLES:
            db.execute(text(f"DELETE FROM {table}"))
        db.commit()


@pytest.fixture(scope="function")
def test_db_session():
    """
    Create fresh database session for each test

    Scope: function (new session per test)
    """
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


@pytest.fixture
def session_factory():
    return TestingSessionLocal


def get_test_db():
    """
    Override function for get_db dependency

    Yields test database session instead of production database
    """
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


class FakeLedgerClient:
    """
    In-memory stand-in for XrplClient

    Transactions are served per address with the same cursor semantics as
    account_tx (ledger_index > since_ledger_index, ascending).
    """

    def __init__(self, validated_ledger: int = 5000):
        self.transactions: Dict[str, List[LedgerTransaction]] = {}
        self.failing: Set[str] = set()
        self.validated_ledger = validated_ledger
        self.calls: List[tuple] = []

    def add(self, address: str, *transactions: LedgerTransaction) -> None:
        self.transactions.setdefault(address, []).extend(transactions)

    async def get_account_transactions(self, address: str, since_ledger_index: Optional[int] = None) -> AccountTxBatch:
        self.calls.append((address, since_ledger_index))
        await asyncio.sleep(0)
        if address in self.failing:
            raise UpstreamUnavailable("All XRPL endpoints failed: timeout", address=address)

        txs = sorted(
            (t for t in self.transactions.get(address, [])
             if since_ledger_index is None or t.ledger_index > since_ledger_index),
            key=lambda t: t.ledger_index,
        )
        return AccountTxBatch(
            transactions=txs,
            max_ledger_index=max((t.ledger_index for t in txs), default=None),
        )

    async def get_validated_ledger_index(self) -> int:
        return self.validated_ledger

    async def get_balance(self, address: str) -> Decimal:
        return Decimal("2500000")

    async def close(self):
        pass


class FakeTelegramTransport:
    """Records sends; chats listed in failing_chats raise TransportFailure"""

    def __init__(self):
        self.sent: List[tuple] = []
        self.failing_chats: Set[str] = set()
        self.bot_token = "123:test"

    async def send(self, chat_id: str, text: str) -> Optional[int]:
        await asyncio.sleep(0)
        if str(chat_id) in self.failing_chats:
            raise TransportFailure(f"Telegram send to {chat_id} failed: Bad Gateway")
        self.sent.append((str(chat_id), text))
        return len(self.sent)

    def sent_to(self, chat_id: str) -> List[str]:
        return [text for chat, text in self.sent if chat == str(chat_id)]

    async def close(self):
        pass


@pytest.fixture
def fake_ledger():
    return FakeLedgerClient()


@pytest.fixture
def fake_transport():
    return FakeTelegramTransport()


@pytest.fixture
def thresholds():
    return Thresholds(default=Decimal("10000"), exchange=Decimal("50000"), critical=Decimal("1000000"))


@pytest.fixture
def registry():
    return AddressRegistry(
        owners={"Test Whale": [WHALE]},
        exchanges=[ExchangeAddressEntry(EXCHANGE, "Binance", EXCHANGE_TAG)],
    )


@pytest.fixture
def dispatcher_config():
    return DispatcherConfig(bot_token="123:test", channels=dict(CHANNELS))


@pytest.fixture
def dispatcher(dispatcher_config, fake_transport, session_factory):
    return AlertDispatcher(dispatcher_config, transport=fake_transport, session_factory=session_factory)


@pytest.fixture
def orchestrator(fake_ledger, session_factory, dispatcher, registry, thresholds):
    return ScanOrchestrator(
        client=fake_ledger,
        session_factory=session_factory,
        dispatcher=dispatcher,
        registry=registry,
        thresholds=thresholds,
        max_concurrency=3,
        dispatch_after_scan=False,
        backfill_on_first_scan=False,
    )


@pytest.fixture
def make_tx():
    """
    Factory for LedgerTransaction

    Usage:
        tx = make_tx("AB12", ledger_index=101, amount=15000)
    """
    def _make(
        tx_hash: str,
        ledger_index: int,
        amount,
        transaction_type: str = "sent",
        source: str = WHALE,
        destination: Optional[str] = OTHER,
        destination_tag: Optional[str] = None,
        currency: str = "XRP",
    ) -> LedgerTransaction:
        return LedgerTransaction(
            hash=tx_hash.ljust(64, "0"),
            ledger_index=ledger_index,
            transaction_type=transaction_type,
            amount=Decimal(str(amount)),
            currency=currency,
            source=source,
            destination=destination,
            destination_tag=destination_tag,
            date=datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc),
        )
    return _make


@pytest.fixture
def make_wallet(test_db_session):
    """
    Factory for MonitoredWallet rows (committed)

    Usage:
        wallet = make_wallet(WHALE, cursor=100)
    """
    def _make(
        address: str = WHALE,
        owner_name: str = "Test Whale",
        cursor: Optional[int] = 100,
        alert_threshold=None,
        is_active: bool = True,
    ) -> MonitoredWallet:
        wallet = MonitoredWallet(
            address=address,
            owner_name=owner_name,
            last_ledger_index=cursor,
            alert_threshold=Decimal(str(alert_threshold)) if alert_threshold is not None else None,
            is_active=is_active,
        )
        test_db_session.add(wallet)
        test_db_session.commit()
        test_db_session.refresh(wallet)
        return wallet
    return _make


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {os.environ['ADMIN_TOKEN']}"}


@pytest.fixture(scope="function")
def test_client(orchestrator, dispatcher):
    """
    FastAPI test client with database and pipeline dependencies overridden

    Uses TestClient which is synchronous (perfect for testing)
    """
    from whale_monitor.main import app
    from whale_monitor.db.session import get_db
    from whale_monitor.api.deps import get_alert_dispatcher, get_health_reporter, get_scan_orchestrator

    app.dependency_overrides[get_db] = get_test_db
    app.dependency_overrides[get_scan_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_alert_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_health_reporter] = lambda: HealthReporter(TestingSessionLocal)

    # Disable rate limiting for tests
    app.state.limiter.enabled = False

    with TestClient(app) as client:
        yield client

    # Cleanup
    app.dependency_overrides.clear()
