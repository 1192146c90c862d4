#!/usr/bin/env python3
"""
Clock Sync Script.

External trigger for the reconciliation pass, for deployments that run
the service with ``CLOCK_DRIVER_ENABLED=false`` and schedule syncs from
cron instead.

Usage:
    CLOCK_API_BASE_URL=http://clock:8000 INTERNAL_API_KEY=... pokerclock-sync

    # Loop every 10 seconds instead of a single pass
    pokerclock-sync --interval 10
"""

import argparse
import asyncio
import os
import sys

import httpx

from pokerclock.client.poller import ClockApiClient, ClockApiError


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Trigger tournament clock reconciliation")
    parser.add_argument(
        "--base-url",
        default=os.getenv("CLOCK_API_BASE_URL", "http://localhost:8000"),
        help="Clock service base URL",
    )
    parser.add_argument(
        "--api-key",
        default=os.getenv("INTERNAL_API_KEY"),
        help="Internal API key (X-API-Key)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=0.0,
        help="Repeat every N seconds (0 = single pass)",
    )
    return parser.parse_args(argv)


def format_report(report: dict) -> str:
    line = (
        f"synced={report.get('synced_tournaments', 0)} "
        f"total={report.get('total_tournaments', 0)} "
        f"failed={report.get('failed_tournaments', 0)} "
        f"level_changes={report.get('level_changes', 0)} "
        f"duration_ms={report.get('duration_ms', 0)}"
    )
    if not report.get("success", True):
        line += f" error={report.get('message')}"
    return line


async def run(args: argparse.Namespace, transport: httpx.AsyncBaseTransport | None = None) -> bool:
    """Run one or more sync passes; False when the last pass failed."""
    async with ClockApiClient(args.base_url, api_key=args.api_key, transport=transport) as client:
        while True:
            try:
                report = await client.sync()
                print(format_report(report))
                ok = bool(report.get("success", True))
            except (ClockApiError, httpx.HTTPError) as e:
                print(f"ERROR: clock sync failed: {e}", file=sys.stderr)
                ok = False

            if args.interval <= 0:
                return ok
            await asyncio.sleep(args.interval)


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    if not args.api_key:
        print("ERROR: INTERNAL_API_KEY environment variable not set", file=sys.stderr)
        sys.exit(1)

    try:
        ok = asyncio.run(run(args))
    except KeyboardInterrupt:
        ok = True
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
