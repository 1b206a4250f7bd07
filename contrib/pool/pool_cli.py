#!/usr/bin/env python3
# Copyright (c) 2025 The Pool Swap Watcher developers
# Distributed under the MIT software license

"""
Pool CLI - query a running Pool Watcher API

Usage:
    # Pool balances
    python3 pool_cli.py balances

    # Ratio and derived prices
    python3 pool_cli.py ratio --api http://127.0.0.1:8000

    # Watcher state and recent settlements
    python3 pool_cli.py status
"""

import argparse
import json
import os
import sys
from typing import Any, Dict

import requests

DEFAULT_API = os.environ.get("POOL_API_URL", "http://127.0.0.1:8000")

COMMANDS = {
    "balances": "/api/wallet/balances",
    "ratio": "/api/wallet/token-ratio",
    "pool": "/api/wallet/pool-info",
    "status": "/api/status",
}


def fetch(api_url: str, command: str, timeout: int = 10) -> Dict[str, Any]:
    """GET one API route and return its JSON body."""
    url = api_url.rstrip("/") + COMMANDS[command]
    resp = requests.get(url, headers={"Accept": "application/json"}, timeout=timeout)
    if resp.status_code != 200:
        try:
            detail = resp.json().get("detail", resp.text)
        except ValueError:
            detail = resp.text
        raise RuntimeError(f"{url} -> HTTP {resp.status_code}: {detail}")
    return resp.json()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Query the Pool Watcher API")
    parser.add_argument("command", choices=list(COMMANDS), help="What to show")
    parser.add_argument("--api", default=DEFAULT_API, help=f"API base URL (default: {DEFAULT_API})")
    args = parser.parse_args(argv)

    try:
        data = fetch(args.api, args.command)
    except (requests.RequestException, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(data, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
