"""
XRPL JSON-RPC Client

Async client for public rippled servers.
Supports endpoint failover, rate limiting, retries and account_tx paging.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable

import httpx

from ..core.exceptions import UpstreamUnavailable
from .config import XrplSettings, xrpl_settings

logger = logging.getLogger(__name__)

# Ripple epoch starts 2000-01-01T00:00:00Z
RIPPLE_EPOCH_OFFSET = 946684800
DROPS_PER_XRP = Decimal(1_000_000)

# rippled error codes worth retrying
TRANSIENT_ERRORS = {"slowDown", "tooBusy", "noNetwork", "noCurrent", "noClosed", "lgrNotFound"}


@dataclass(frozen=True)
class LedgerTransaction:
    """Parsed account_tx entry, seen from the monitored address"""
    hash: str
    ledger_index: int
    transaction_type: str  # "sent", "received" or the raw TransactionType
    amount: Decimal
    currency: str
    source: str | None
    destination: str | None
    destination_tag: str | None
    date: datetime | None
    succeeded: bool = True


@dataclass
class AccountTxBatch:
    """Transactions newer than a cursor, ascending by ledger index"""
    transactions: list[LedgerTransaction] = field(default_factory=list)
    # Highest ledger index fully read, including skipped/failed transactions
    max_ledger_index: int | None = None
    truncated: bool = False


class XrplRequestError(Exception):
    """Single request failure (retryable)"""
    pass


class RateLimitError(XrplRequestError):
    """Server asked us to slow down"""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class XrplResultError(UpstreamUnavailable):
    """rippled answered with a non-transient error (e.g. actNotFound)"""

    def __init__(self, error: str, message: str | None = None, address: str | None = None):
        super().__init__(message or f"XRPL error: {error}", address=address)
        self.error = error


def drops_to_xrp(drops: str | int) -> Decimal:
    """Convert a drops amount to XRP"""
    return Decimal(str(drops)) / DROPS_PER_XRP


def ripple_time_to_datetime(ripple_time: int | None) -> datetime | None:
    if ripple_time is None:
        return None
    return datetime.fromtimestamp(int(ripple_time) + RIPPLE_EPOCH_OFFSET, tz=timezone.utc)


def parse_amount(amount: Any) -> tuple[Decimal, str]:
    """
    Parse an XRPL Amount field

    XRP amounts are strings of drops, issued currencies are objects
    with value/currency/issuer.
    """
    if amount is None:
        return Decimal(0), "XRP"
    if isinstance(amount, (str, int)):
        return drops_to_xrp(amount), "XRP"
    if isinstance(amount, dict):
        try:
            return Decimal(str(amount.get("value", "0"))), amount.get("currency", "XRP")
        except InvalidOperation:
            return Decimal(0), amount.get("currency", "XRP")
    return Decimal(0), "XRP"


def parse_account_tx_entry(entry: dict[str, Any], address: str) -> LedgerTransaction | None:
    """
    Parse one account_tx entry (API v1 "tx" or v2 "tx_json" shape)

    Args:
        entry: Raw entry from result.transactions
        address: The monitored account

    Returns:
        Parsed LedgerTransaction or None if the entry is unusable
    """
    tx = entry.get("tx") or entry.get("tx_json") or {}
    meta = entry.get("meta") or {}

    tx_hash = tx.get("hash") or entry.get("hash")
    ledger_index = tx.get("ledger_index") or entry.get("ledger_index")
    if not tx_hash or ledger_index is None:
        logger.warning("Skipping account_tx entry without hash/ledger_index")
        return None

    raw_type = tx.get("TransactionType", "Unknown")
    if raw_type == "Payment":
        tx_type = "sent" if tx.get("Account") == address else "received"
    else:
        tx_type = raw_type

    # delivered_amount guards against partial payments reporting a larger Amount
    delivered = meta.get("delivered_amount") if isinstance(meta, dict) else None
    if delivered is None or delivered == "unavailable":
        delivered = tx.get("Amount", tx.get("DeliverMax"))
    amount, currency = parse_amount(delivered)

    destination_tag = tx.get("DestinationTag")
    result_code = meta.get("TransactionResult") if isinstance(meta, dict) else None

    return LedgerTransaction(
        hash=tx_hash,
        ledger_index=int(ledger_index),
        transaction_type=tx_type,
        amount=amount,
        currency=currency,
        source=tx.get("Account"),
        destination=tx.get("Destination"),
        destination_tag=str(destination_tag) if destination_tag is not None else None,
        date=ripple_time_to_datetime(tx.get("date")),
        succeeded=result_code in (None, "tesSUCCESS"),
    )


def _entry_ledger_index(entry: dict[str, Any]) -> int:
    tx = entry.get("tx") or entry.get("tx_json") or {}
    return int(tx.get("ledger_index") or entry.get("ledger_index") or 0)


class XrplClient:
    """
    Async client for XRPL JSON-RPC

    Handles:
    - Endpoint failover (first healthy endpoint wins)
    - Bounded exponential backoff on 429 / 5xx / transient rippled errors
    - A minimum delay between calls shared by every caller of this client
    """

    def __init__(
        self,
        endpoints: list[str] | None = None,
        settings: XrplSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or xrpl_settings
        self.endpoints = endpoints or self.settings.endpoint_list
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None
        self._throttle_lock = asyncio.Lock()
        self._last_request_at = 0.0

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers={"Content-Type": "application/json"},
                timeout=self.settings.REQUEST_TIMEOUT_SECONDS,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close HTTP client"""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _throttle(self):
        """Keep at least REQUEST_DELAY_SECONDS between two calls"""
        async with self._throttle_lock:
            wait = self.settings.REQUEST_DELAY_SECONDS - (time.monotonic() - self._last_request_at)
            if wait > 0:
                await self._sleep(wait)
            self._last_request_at = time.monotonic()

    def _backoff(self, attempt: int) -> float:
        return min(
            self.settings.RETRY_BASE_DELAY_SECONDS * (2 ** attempt),
            self.settings.RETRY_MAX_DELAY_SECONDS,
        )

    async def _call(self, endpoint: str, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """One JSON-RPC call against one endpoint"""
        client = await self._get_client()
        await self._throttle()

        response = await client.post(endpoint, json={"method": method, "params": [params]})

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                f"{endpoint} rate limited",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if response.status_code >= 500:
            raise XrplRequestError(f"{endpoint} returned HTTP {response.status_code}")
        response.raise_for_status()

        try:
            body = response.json()
        except ValueError as e:
            raise XrplRequestError(f"{endpoint} returned a non-JSON body") from e
        if not isinstance(body, dict) or not isinstance(body.get("result") or {}, dict):
            raise XrplRequestError(f"{endpoint} returned a malformed JSON-RPC body")

        result = body.get("result") or {}
        if result.get("status") == "error":
            error = result.get("error", "unknown")
            if error in TRANSIENT_ERRORS:
                raise RateLimitError(f"{endpoint} answered {error}")
            raise XrplResultError(error, result.get("error_message") or f"XRPL error: {error}")

        return result

    async def _request(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """
        Make a JSON-RPC request with retries and endpoint failover

        Raises:
            XrplResultError: rippled rejected the request (not retried)
            UpstreamUnavailable: every endpoint failed after all retries
        """
        last_error: Exception | None = None

        for endpoint in self.endpoints:
            for attempt in range(self.settings.RETRY_ATTEMPTS):
                try:
                    return await self._call(endpoint, method, params)

                except RateLimitError as e:
                    last_error = e
                    delay = e.retry_after if e.retry_after is not None else self._backoff(attempt)
                    delay = min(delay, self.settings.RETRY_MAX_DELAY_SECONDS)
                    logger.warning(
                        "XRPL rate limit on %s, retrying in %.1fs (attempt %d/%d)",
                        endpoint, delay, attempt + 1, self.settings.RETRY_ATTEMPTS,
                    )
                    await self._sleep(delay)

                except (XrplRequestError, httpx.RequestError) as e:
                    last_error = e
                    delay = self._backoff(attempt)
                    logger.warning(
                        "XRPL request %s to %s failed: %s (attempt %d/%d)",
                        method, endpoint, e, attempt + 1, self.settings.RETRY_ATTEMPTS,
                    )
                    await self._sleep(delay)

                except httpx.HTTPStatusError as e:
                    # 4xx other than 429: this endpoint will not accept the call
                    last_error = e
                    logger.warning("XRPL endpoint %s rejected %s: HTTP %d", endpoint, method, e.response.status_code)
                    break

            logger.error("XRPL endpoint %s exhausted for %s, failing over", endpoint, method)

        raise UpstreamUnavailable(f"All XRPL endpoints failed: {last_error}")

    async def get_account_transactions(
        self,
        address: str,
        since_ledger_index: int | None = None,
    ) -> AccountTxBatch:
        """
        Get transactions for an address with ledger index > since_ledger_index

        Pages forward with the marker. When MAX_PAGES_PER_SCAN is reached
        the trailing ledger is dropped, because it may be only partly read.

        Args:
            address: XRPL account to query
            since_ledger_index: Cursor; None reads from the oldest available ledger

        Returns:
            AccountTxBatch in ascending ledger order
        """
        params: dict[str, Any] = {
            "account": address,
            "ledger_index_min": since_ledger_index + 1 if since_ledger_index is not None else -1,
            "ledger_index_max": -1,
            "limit": self.settings.PAGE_SIZE,
            "forward": True,
        }

        entries: list[dict[str, Any]] = []
        truncated = False
        pages = 0

        while True:
            try:
                result = await self._request("account_tx", params)
            except XrplResultError as e:
                if e.error == "actNotFound":
                    logger.info("Account %s not found on ledger (unfunded)", address)
                    return AccountTxBatch()
                e.address = address
                raise
            except UpstreamUnavailable as e:
                e.address = address
                raise

            entries.extend(result.get("transactions") or [])
            pages += 1

            marker = result.get("marker")
            if not marker:
                break

            ledgers = {_entry_ledger_index(e) for e in entries}
            if pages >= self.settings.MAX_PAGES_PER_SCAN and len(ledgers) > 1:
                truncated = True
                break

            params = {**params, "marker": marker}

        entries.sort(key=_entry_ledger_index)
        if truncated:
            last_ledger = _entry_ledger_index(entries[-1])
            entries = [e for e in entries if _entry_ledger_index(e) != last_ledger]
            logger.info(
                "account_tx for %s truncated after %d pages, resuming before ledger %d next scan",
                address, pages, last_ledger,
            )

        batch = AccountTxBatch(truncated=truncated)
        for entry in entries:
            parsed = parse_account_tx_entry(entry, address)
            if parsed is None:
                continue
            ledger = parsed.ledger_index
            if batch.max_ledger_index is None or ledger > batch.max_ledger_index:
                batch.max_ledger_index = ledger
            if since_ledger_index is not None and ledger <= since_ledger_index:
                continue
            if not parsed.succeeded:
                logger.debug("Skipping failed transaction %s", parsed.hash[:16])
                continue
            batch.transactions.append(parsed)

        return batch

    async def get_validated_ledger_index(self) -> int:
        """Current validated ledger index"""
        result = await self._request("ledger", {"ledger_index": "validated"})
        if "ledger_index" in result:
            return int(result["ledger_index"])
        return int(result.get("ledger", {}).get("ledger_index"))

    async def get_balance(self, address: str) -> Decimal:
        """XRP balance of an account"""
        result = await self._request("account_info", {"account": address, "ledger_index": "validated"})
        return drops_to_xrp(result.get("account_data", {}).get("Balance", "0"))


# Singleton instance for convenience
_client: XrplClient | None = None


async def get_xrpl_client() -> XrplClient:
    """Get global XRPL client instance"""
    global _client
    if _client is None:
        _client = XrplClient()
    return _client
