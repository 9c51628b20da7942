"""
Unit Tests for the XRPL JSON-RPC Client

Served by httpx.MockTransport, no network
"""

import asyncio
import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from whale_monitor.core.exceptions import UpstreamUnavailable
from whale_monitor.xrpl.client import (
    XrplClient,
    XrplResultError,
    parse_account_tx_entry,
    parse_amount,
    ripple_time_to_datetime,
)
from whale_monitor.xrpl.config import XrplSettings

WHALE = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"
OTHER = "rPT1Sjq2YGrBMTttX4GZHjKu9dyfzbpAYe"

PRIMARY = "https://primary.example"
BACKUP = "https://backup.example"


def fast_settings(**overrides):
    values = dict(
        ENDPOINTS=f"{PRIMARY},{BACKUP}",
        RETRY_ATTEMPTS=2,
        RETRY_BASE_DELAY_SECONDS=0.5,
        RETRY_MAX_DELAY_SECONDS=2.0,
        REQUEST_DELAY_SECONDS=0,
        PAGE_SIZE=2,
        MAX_PAGES_PER_SCAN=10,
    )
    values.update(overrides)
    return XrplSettings(**values)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def payment(tx_hash, ledger_index, drops="15000000000", account=WHALE, destination=OTHER, tag=None, result="tesSUCCESS"):
    tx = {
        "hash": tx_hash.ljust(64, "0"),
        "ledger_index": ledger_index,
        "TransactionType": "Payment",
        "Account": account,
        "Destination": destination,
        "Amount": drops,
        "date": 0,
    }
    if tag is not None:
        tx["DestinationTag"] = tag
    return {"tx": tx, "meta": {"TransactionResult": result, "delivered_amount": drops}, "validated": True}


def make_client(handler, **settings):
    sleep = SleepRecorder()
    client = XrplClient(
        settings=fast_settings(**settings),
        transport=httpx.MockTransport(handler),
        sleep=sleep,
    )
    return client, sleep


def run(client, call):
    """Run a client coroutine and close the client afterwards"""
    async def _run():
        try:
            return await call()
        finally:
            await client.close()
    return asyncio.run(_run())


@pytest.mark.unit
def test_ripple_epoch_conversion():
    assert ripple_time_to_datetime(0) == datetime(2000, 1, 1, tzinfo=timezone.utc)
    assert ripple_time_to_datetime(None) is None


@pytest.mark.unit
def test_parse_amount_drops_and_issued():
    assert parse_amount("15000000000") == (Decimal("15000"), "XRP")
    assert parse_amount({"value": "12.5", "currency": "USD", "issuer": OTHER}) == (Decimal("12.5"), "USD")


@pytest.mark.unit
def test_parse_entry_prefers_delivered_amount():
    """Partial payments report the delivered amount, not Amount"""
    entry = payment("A1", 101, drops="100000000000")
    entry["meta"]["delivered_amount"] = "1000000"

    parsed = parse_account_tx_entry(entry, WHALE)

    assert parsed.amount == Decimal("1")
    assert parsed.transaction_type == "sent"


@pytest.mark.unit
def test_parse_entry_direction_and_tag():
    received = parse_account_tx_entry(payment("A2", 102, account=OTHER, destination=WHALE, tag=101391685), WHALE)
    assert received.transaction_type == "received"
    assert received.destination_tag == "101391685"

    failed = parse_account_tx_entry(payment("A3", 103, result="tecUNFUNDED_PAYMENT"), WHALE)
    assert failed.succeeded is False


@pytest.mark.unit
def test_account_tx_pages_forward_and_skips_failed():
    """Marker paging collects every page; failed transactions still move max_ledger_index"""
    pages = [
        {"transactions": [payment("B1", 101), payment("B2", 102)], "marker": {"ledger": 102, "seq": 1}},
        {"transactions": [payment("B3", 103, result="tecPATH_DRY")]},
    ]
    requests = []

    def handler(request):
        body = json.loads(request.content)
        requests.append(body["params"][0])
        return httpx.Response(200, json={"result": {"status": "success", **pages[len(requests) - 1]}})

    client, _ = make_client(handler)
    batch = run(client, lambda: client.get_account_transactions(WHALE, since_ledger_index=100))

    assert [t.ledger_index for t in batch.transactions] == [101, 102]
    assert batch.max_ledger_index == 103
    assert batch.truncated is False
    assert requests[0]["ledger_index_min"] == 101
    assert requests[0]["forward"] is True
    assert "marker" in requests[1]


@pytest.mark.unit
def test_account_tx_truncation_drops_trailing_ledger():
    """Hitting the page limit drops the possibly incomplete last ledger"""
    def handler(request):
        return httpx.Response(200, json={"result": {
            "status": "success",
            "transactions": [payment("C1", 201), payment("C2", 202)],
            "marker": "more",
        }})

    client, _ = make_client(handler, MAX_PAGES_PER_SCAN=1)
    batch = run(client, lambda: client.get_account_transactions(WHALE, since_ledger_index=200))

    assert batch.truncated is True
    assert [t.ledger_index for t in batch.transactions] == [201]
    assert batch.max_ledger_index == 201


@pytest.mark.unit
def test_unfunded_account_returns_empty_batch():
    def handler(request):
        return httpx.Response(200, json={"result": {"status": "error", "error": "actNotFound"}})

    client, _ = make_client(handler)
    batch = run(client, lambda: client.get_account_transactions(WHALE))

    assert batch.transactions == []
    assert batch.max_ledger_index is None


@pytest.mark.unit
def test_non_transient_error_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request.url)
        return httpx.Response(200, json={"result": {"status": "error", "error": "invalidParams"}})

    client, sleep = make_client(handler)
    with pytest.raises(XrplResultError):
        run(client, lambda: client.get_balance(WHALE))
    assert len(calls) == 1
    assert sleep.delays == []


@pytest.mark.unit
def test_failover_to_backup_endpoint():
    """Primary returning 503 is retried with backoff, then the backup answers"""
    hosts = []

    def handler(request):
        hosts.append(request.url.host)
        if request.url.host == "primary.example":
            return httpx.Response(503)
        return httpx.Response(200, json={"result": {"status": "success", "ledger_index": 9000}})

    client, sleep = make_client(handler)
    assert run(client, client.get_validated_ledger_index) == 9000
    assert hosts == ["primary.example", "primary.example", "backup.example"]
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.unit
def test_rate_limit_honours_retry_after():
    responses = [httpx.Response(429, headers={"Retry-After": "1"})]

    def handler(request):
        if responses:
            return responses.pop()
        return httpx.Response(200, json={"result": {"status": "success", "account_data": {"Balance": "2500000000000"}}})

    client, sleep = make_client(handler)
    assert run(client, lambda: client.get_balance(WHALE)) == Decimal("2500000")
    assert sleep.delays == [1.0]


@pytest.mark.unit
def test_all_endpoints_down_raises_upstream_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client, sleep = make_client(handler)
    with pytest.raises(UpstreamUnavailable) as exc_info:
        run(client, lambda: client.get_account_transactions(WHALE, since_ledger_index=100))

    assert exc_info.value.address == WHALE
    # two attempts per endpoint, backoff capped by RETRY_MAX_DELAY_SECONDS
    assert len(sleep.delays) == 4
    assert max(sleep.delays) <= 2.0


@pytest.mark.unit
def test_html_reply_is_retried_then_fails_over():
    """A 200 error page from a proxy is retried and the backup answers"""
    hosts = []

    def handler(request):
        hosts.append(request.url.host)
        if request.url.host == "primary.example":
            return httpx.Response(200, text="<html>Cloudflare</html>", headers={"Content-Type": "text/html"})
        return httpx.Response(200, json={"result": {"status": "success", "ledger_index": 9100}})

    client, sleep = make_client(handler)
    assert run(client, client.get_validated_ledger_index) == 9100
    assert hosts == ["primary.example", "primary.example", "backup.example"]
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.unit
def test_json_body_that_is_not_an_object_raises_upstream_unavailable():
    def handler(request):
        return httpx.Response(200, json=["not", "an", "object"])

    client, sleep = make_client(handler)
    with pytest.raises(UpstreamUnavailable) as exc_info:
        run(client, lambda: client.get_account_transactions(WHALE, since_ledger_index=100))

    assert exc_info.value.address == WHALE
    assert "malformed" in str(exc_info.value)
    assert len(sleep.delays) == 4
