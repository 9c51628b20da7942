"""
XRP Ledger Integration

- JSON-RPC client with failover and rate limiting
- Per-wallet scanner that records new transactions and advances the cursor
"""

from .config import xrpl_settings

# Lazy imports - XrplClient and LedgerScanner require httpx / the database layer
# Import them directly when needed:
#   from whale_monitor.xrpl.client import XrplClient
#   from whale_monitor.xrpl.scanner import LedgerScanner

__all__ = ["xrpl_settings"]
