#!/usr/bin/env python3
"""
Trigger Scan Script

Calls the admin trigger endpoints of the XRPL Whale Monitor, e.g. from cron
when the in-process scheduler is disabled.

Usage:
    python scripts/trigger_scan.py --url URL --token TOKEN --all

    # Or with environment variables:
    export API_URL=http://localhost:8000
    export ADMIN_TOKEN=your_token
    python scripts/trigger_scan.py --all

Example:
    python scripts/trigger_scan.py --address rUzSNPtxrmeSTpnjsvaTuQvF2SQFPFSvLn
    python scripts/trigger_scan.py --dispatch-pending
"""

import argparse
import os
import sys
import requests
from typing import Optional


def post(api_url: str, token: str, path: str, timeout: int = 300) -> Optional[dict]:
    """POST to an admin endpoint, returning the JSON body or None on failure"""
    url = f"{api_url.rstrip('/')}{path}"
    headers = {"Authorization": f"Bearer {token}"}

    try:
        response = requests.post(url, headers=headers, timeout=timeout)

        if response.status_code == 200:
            return response.json()
        elif response.status_code == 403:
            print("  [ERROR] Access denied - check ADMIN_TOKEN")
            return None
        else:
            print(f"  [ERROR] {response.status_code}: {response.text}")
            return None

    except requests.exceptions.ConnectionError:
        print(f"  [ERROR] Cannot connect to {api_url}")
        return None
    except requests.exceptions.Timeout:
        print("  [ERROR] Request timeout")
        return None


def print_wallet_result(result: dict) -> None:
    status = "FAIL" if result.get("error") else "OK"
    line = (
        f"  [{status}] {result['address']} ({result.get('owner_name') or '?'}): "
        f"{result.get('new_transactions', 0)} new tx, {result.get('alerts_created', 0)} alerts"
    )
    if result.get("error"):
        line += f" - {result['error']}"
    print(line)


def main():
    parser = argparse.ArgumentParser(description="Trigger XRPL whale monitor scans")
    parser.add_argument("--url", help="API base URL", default=os.environ.get("API_URL"))
    parser.add_argument("--token", help="Admin token", default=os.environ.get("ADMIN_TOKEN"))
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--all", action="store_true", help="Scan every active wallet")
    target.add_argument("--address", help="Scan a single wallet")
    target.add_argument("--dispatch-pending", action="store_true", help="Dispatch pending alerts only")
    args = parser.parse_args()

    if not args.url:
        print("[ERROR] API_URL required. Use --url or set API_URL env var")
        sys.exit(1)

    if not args.token:
        print("[ERROR] ADMIN_TOKEN required. Use --token or set ADMIN_TOKEN env var")
        sys.exit(1)

    if args.address:
        print(f"Scanning {args.address}...")
        result = post(args.url, args.token, f"/admin/monitor/wallets/{args.address}")
        if result is None:
            sys.exit(1)
        print_wallet_result(result)
        return

    if args.dispatch_pending:
        print("Dispatching pending alerts...")
        summary = post(args.url, args.token, "/admin/alerts/dispatch-pending")
        if summary is None:
            sys.exit(1)
        print(f"  Sent: {summary['sent']}, already sent: {summary['already_sent']}, failed: {summary['failed']}")
        if summary["failed"] > 0:
            sys.exit(1)
        return

    print("Scanning all active wallets...")
    batch = post(args.url, args.token, "/admin/monitor/all")
    if batch is None:
        sys.exit(1)

    for result in batch["results"]:
        print_wallet_result(result)

    print(f"\n{'='*60}")
    print(f"  Succeeded: {batch['success_count']}")
    print(f"  Failed: {batch['failure_count']}")
    print(f"  Skipped: {batch['skipped_count']}")
    if "dispatch" in batch:
        print(f"  Alerts sent: {batch['dispatch']['sent']}")
    print(f"{'='*60}\n")

    if batch["failure_count"] > 0:
        sys.exit(1)


if __name__ == "__main__":
    main()
