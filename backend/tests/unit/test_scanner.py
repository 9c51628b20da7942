"""
Unit Tests for the Ledger Scanner and Wallet Cursor Store
"""

import asyncio

import httpx
import pytest
from sqlalchemy import func, select

from whale_monitor.core.exceptions import StoreUnavailable
from whale_monitor.db.models import MonitoringHealth, WalletTransaction
from whale_monitor.services import wallets as wallet_store
from whale_monitor.xrpl.client import XrplClient
from whale_monitor.xrpl.config import XrplSettings
from whale_monitor.xrpl.scanner import LedgerScanner

WHALE = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"
EXCHANGE = "rN7n7otQDd6FczFgLdSqtcsAUxDkw6fzRH"


def reload_wallet(db, address=WHALE):
    db.expire_all()
    return wallet_store.get_wallet(db, address)


def transaction_count(db):
    return db.execute(select(func.count(WalletTransaction.id))).scalar_one()


@pytest.fixture
def scanner(fake_ledger, session_factory, registry):
    return LedgerScanner(fake_ledger, session_factory=session_factory, registry=registry)


@pytest.mark.unit
def test_advance_cursor_only_moves_forward(make_wallet, test_db_session):
    """A lower or equal ledger index never overwrites the cursor"""
    make_wallet(cursor=500)

    assert wallet_store.advance_cursor(test_db_session, WHALE, 400) is False
    assert wallet_store.advance_cursor(test_db_session, WHALE, 500) is False
    test_db_session.commit()
    assert reload_wallet(test_db_session).last_ledger_index == 500

    assert wallet_store.advance_cursor(test_db_session, WHALE, 501) is True
    test_db_session.commit()
    assert reload_wallet(test_db_session).last_ledger_index == 501


@pytest.mark.unit
def test_onboard_wallet_is_idempotent(test_db_session):
    _, created = wallet_store.onboard_wallet(test_db_session, WHALE, "Test Whale")
    wallet, created_again = wallet_store.onboard_wallet(test_db_session, WHALE, "Someone Else")
    test_db_session.commit()

    assert created is True
    assert created_again is False
    assert wallet.owner_name == "Test Whale"


@pytest.mark.unit
def test_scan_records_and_advances(scanner, fake_ledger, make_wallet, make_tx, test_db_session):
    """New transactions are recorded and the cursor moves to the highest ledger"""
    wallet = make_wallet(cursor=100)
    fake_ledger.add(WHALE, make_tx("S2", 103, 20000), make_tx("S1", 101, 15000))

    result = asyncio.run(scanner.scan(wallet))

    assert result.ok
    assert [t.ledger_index for t in result.transactions] == [101, 103]
    assert result.recorded_count == 2
    assert result.last_ledger_index == 103
    assert fake_ledger.calls == [(WHALE, 100)]

    stored = reload_wallet(test_db_session)
    assert stored.last_ledger_index == 103
    assert stored.last_checked_at is not None
    assert transaction_count(test_db_session) == 2


@pytest.mark.unit
def test_rescan_of_same_range_is_idempotent(scanner, fake_ledger, make_wallet, make_tx, test_db_session):
    """Scanning the same range twice leaves one row per transaction"""
    wallet = make_wallet(cursor=100)
    fake_ledger.add(WHALE, make_tx("T1", 101, 15000), make_tx("T2", 102, 16000))

    asyncio.run(scanner.scan(wallet))
    # Same stale cursor, as after a crash between insert and cursor commit
    again = asyncio.run(scanner.scan(wallet))

    assert again.recorded_count == 0
    assert len(again.transactions) == 2
    assert transaction_count(test_db_session) == 2
    assert reload_wallet(test_db_session).last_ledger_index == 102


@pytest.mark.unit
def test_scan_tags_exchange_counterparty(scanner, fake_ledger, make_wallet, make_tx, test_db_session):
    wallet = make_wallet(cursor=100)
    fake_ledger.add(WHALE, make_tx("X1", 101, 60000, destination=EXCHANGE, destination_tag="101391685"))

    asyncio.run(scanner.scan(wallet))

    row = test_db_session.execute(select(WalletTransaction)).scalar_one()
    assert row.exchange_name == "Binance"
    assert row.destination_tag == "101391685"


@pytest.mark.unit
def test_first_scan_initializes_cursor_without_backfill(scanner, fake_ledger, make_wallet, make_tx, test_db_session):
    """A wallet without cursor starts at the validated ledger, history is skipped"""
    wallet = make_wallet(cursor=None)
    fake_ledger.add(WHALE, make_tx("U1", 101, 15000))

    result = asyncio.run(scanner.scan(wallet))

    assert result.cursor_initialized
    assert result.transactions == []
    assert reload_wallet(test_db_session).last_ledger_index == fake_ledger.validated_ledger
    assert transaction_count(test_db_session) == 0


@pytest.mark.unit
def test_first_scan_with_backfill(fake_ledger, session_factory, registry, make_wallet, make_tx, test_db_session):
    scanner = LedgerScanner(fake_ledger, session_factory=session_factory, registry=registry, backfill_on_first_scan=True)
    wallet = make_wallet(cursor=None)
    fake_ledger.add(WHALE, make_tx("V1", 101, 15000))

    result = asyncio.run(scanner.scan(wallet))

    assert result.recorded_count == 1
    assert reload_wallet(test_db_session).last_ledger_index == 101


@pytest.mark.unit
def test_upstream_failure_keeps_cursor(scanner, fake_ledger, make_wallet, make_tx, test_db_session):
    """Ledger source down: cursor unchanged, last_error and a health error recorded"""
    wallet = make_wallet(cursor=100)
    fake_ledger.add(WHALE, make_tx("W1", 101, 15000))
    fake_ledger.failing.add(WHALE)

    result = asyncio.run(scanner.scan(wallet))

    assert not result.ok
    assert "All XRPL endpoints failed" in result.error

    stored = reload_wallet(test_db_session)
    assert stored.last_ledger_index == 100
    assert "timeout" in stored.last_error
    assert transaction_count(test_db_session) == 0

    health = test_db_session.execute(
        select(MonitoringHealth).where(MonitoringHealth.service_name == f"wallet_monitor_{WHALE}")
    ).scalar_one()
    assert health.status == "error"

    # Recovery picks up the same range and clears the error
    fake_ledger.failing.clear()
    recovered = asyncio.run(scanner.scan(stored))
    assert recovered.recorded_count == 1
    stored = reload_wallet(test_db_session)
    assert stored.last_ledger_index == 101
    assert stored.last_error is None


@pytest.mark.unit
def test_empty_scan_marks_checked(scanner, make_wallet, test_db_session):
    wallet = make_wallet(cursor=100)

    result = asyncio.run(scanner.scan(wallet))

    assert result.ok
    assert result.last_ledger_index == 100
    assert reload_wallet(test_db_session).last_checked_at is not None


@pytest.mark.unit
def test_store_failure_raises_store_unavailable(fake_ledger, registry, make_wallet, make_tx):
    """A broken store surfaces as StoreUnavailable, not a silent success"""
    from sqlalchemy.exc import OperationalError

    class BrokenSession:
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def get_bind(self):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        def execute(self, *args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

    wallet = make_wallet(cursor=100)
    fake_ledger.add(WHALE, make_tx("Y1", 101, 15000))
    scanner = LedgerScanner(fake_ledger, session_factory=BrokenSession, registry=registry)

    with pytest.raises(StoreUnavailable):
        asyncio.run(scanner.scan(wallet))


@pytest.mark.unit
def test_seed_monitored_wallets_is_idempotent(session_factory, registry, test_db_session):
    """Seeding twice onboards once and keeps existing cursors"""
    from whale_monitor.db.seed import seed_monitored_wallets

    assert seed_monitored_wallets(session_factory, registry) == 1
    wallet_store.advance_cursor(test_db_session, WHALE, 700)
    test_db_session.commit()

    assert seed_monitored_wallets(session_factory, registry) == 0
    assert reload_wallet(test_db_session).last_ledger_index == 700


@pytest.mark.unit
def test_batch_handler_failure_keeps_cursor(scanner, fake_ledger, make_wallet, make_tx, test_db_session):
    """When on_batch cannot store its results the cursor stays and the batch comes back"""
    wallet = make_wallet(cursor=100)
    fake_ledger.add(WHALE, make_tx("Z1", 101, 15000))

    def failing_handler(transactions):
        raise StoreUnavailable("Could not store alert: database is locked", address=WHALE)

    with pytest.raises(StoreUnavailable):
        asyncio.run(scanner.scan(wallet, on_batch=failing_handler))

    stored = reload_wallet(test_db_session)
    assert stored.last_ledger_index == 100
    assert transaction_count(test_db_session) == 1
    health = test_db_session.execute(
        select(MonitoringHealth).where(MonitoringHealth.service_name == f"wallet_monitor_{WHALE}")
    ).scalar_one()
    assert health.status == "error"

    handed_over = []
    result = asyncio.run(scanner.scan(stored, on_batch=handed_over.extend))

    assert [t.ledger_index for t in handed_over] == [101]
    assert result.recorded_count == 0
    assert reload_wallet(test_db_session).last_ledger_index == 101


@pytest.mark.unit
def test_non_json_upstream_reply_is_an_upstream_failure(session_factory, registry, make_wallet, test_db_session):
    """A proxy error page served as 200 is handled like an unreachable ledger"""
    def handler(request):
        return httpx.Response(200, text="<html>Cloudflare</html>", headers={"Content-Type": "text/html"})

    async def sleep(delay):
        pass

    client = XrplClient(
        settings=XrplSettings(ENDPOINTS="https://primary.example", RETRY_ATTEMPTS=2, REQUEST_DELAY_SECONDS=0),
        transport=httpx.MockTransport(handler),
        sleep=sleep,
    )
    scanner = LedgerScanner(client, session_factory=session_factory, registry=registry)
    wallet = make_wallet(cursor=100)

    async def scan():
        try:
            return await scanner.scan(wallet)
        finally:
            await client.close()

    result = asyncio.run(scan())

    assert not result.ok
    assert "non-JSON" in result.error
    stored = reload_wallet(test_db_session)
    assert stored.last_ledger_index == 100
    assert "non-JSON" in stored.last_error
    health = test_db_session.execute(
        select(MonitoringHealth).where(MonitoringHealth.service_name == f"wallet_monitor_{WHALE}")
    ).scalar_one()
    assert health.status == "error"
