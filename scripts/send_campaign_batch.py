#!/usr/bin/env python3
"""
Scheduler helper: log in as admin and send one campaign batch.

Intended to be run from cron (or any timer) against a running backend.
Runs must not overlap; the cron entry should use flock or equivalent:

  */15 * * * * flock -n /tmp/campaign.lock python scripts/send_campaign_batch.py --track employee

Usage
-----
# Employee track, server default batch size, targeting localhost:8000
python scripts/send_campaign_batch.py

# Manager-CC track, 200 mails
python scripts/send_campaign_batch.py --track manager --batch-size 200

# Only report how many are left
python scripts/send_campaign_batch.py --remaining-only

Environment / .env
------------------
ADMIN_USERNAME   Admin login name (required).
ADMIN_PASSWORD   Admin password (required).
"""

import argparse
import json
import os
import sys
import textwrap

import httpx
from dotenv import load_dotenv


def _login(client: httpx.Client, username: str, password: str) -> str:
    response = client.post("/api/auth/login", json={"username": username, "password": password})
    response.raise_for_status()
    return response.json()["access_token"]


def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


def main() -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Send one verification-mail batch through the backend API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/send_campaign_batch.py
              python scripts/send_campaign_batch.py --track manager --batch-size 200
              python scripts/send_campaign_batch.py --remaining-only
        """),
    )
    parser.add_argument(
        "--url",
        default="http://localhost:8000",
        help="Backend base URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--track",
        default="employee",
        choices=["employee", "manager"],
        help="Which campaign track to send (default: employee)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Maximum mails in this batch (default: server setting)",
    )
    parser.add_argument(
        "--remaining-only",
        action="store_true",
        help="Print the unsent count for the track without sending.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=600.0,
        help="HTTP timeout in seconds (default: 600; large batches take a while)",
    )
    args = parser.parse_args()

    username = os.getenv("ADMIN_USERNAME", "")
    password = os.getenv("ADMIN_PASSWORD", "")
    if not username or not password:
        print(
            "ERROR: ADMIN_USERNAME and ADMIN_PASSWORD must be set in the environment or .env file.",
            file=sys.stderr,
        )
        return 1

    with httpx.Client(base_url=args.url.rstrip("/"), timeout=args.timeout) as client:
        try:
            token = _login(client, username, password)
        except httpx.HTTPError as exc:
            print(f"ERROR: login failed: {exc}", file=sys.stderr)
            return 1

        headers = {"Authorization": f"Bearer {token}"}
        params = {"track": args.track}

        if args.remaining_only:
            response = client.get("/api/email/remaining", params=params, headers=headers)
        else:
            if args.batch_size is not None:
                params["batch_size"] = args.batch_size
            response = client.post("/api/email/send-batch", params=params, headers=headers)

    _print_response(response)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
