"""
One-shot discovery + resolution probe.

Runs a single batch against the live site without starting the relay, then
prints what was found. Useful for checking the heuristics after the site
changes its layout.

Usage:
    python -m scripts.probe_events --limit 1
    python -m scripts.probe_events --headful --limit 3
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from dotenv import load_dotenv

from services.ppv.browser.browser_client import PlaywrightSession
from services.ppv.discovery import EventDiscovery
from services.ppv.errors import DiscoveryError
from services.ppv.resolver import StreamResolver
from shared.config.relay import load_app_config
from shared.logging.logger import get_logger

log = get_logger("scripts.probe", runtime="probe")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Probe live events and their manifests")
    parser.add_argument(
        "--limit",
        type=int,
        default=1,
        help="Number of discovered events to resolve (default: 1, 0 = all)",
    )
    parser.add_argument(
        "--headful",
        action="store_true",
        help="Show the browser window",
    )
    parser.add_argument(
        "--site",
        default=None,
        help="Override the landing page URL",
    )
    return parser.parse_args()


async def probe(args: argparse.Namespace) -> int:
    cfg = load_app_config()
    if args.headful:
        cfg.browser.headless = False
    if args.site:
        cfg.discovery.site_url = args.site

    session = await PlaywrightSession.launch(cfg.browser)
    try:
        try:
            candidates = await EventDiscovery(cfg.discovery).discover(session)
        except DiscoveryError as e:
            log.error(f"Discovery failed: {e}")
            return 1

        if args.limit > 0:
            candidates = candidates[: args.limit]

        streams = await StreamResolver(cfg.resolver).resolve_all(candidates, session)
    finally:
        await session.close()

    print("=" * 80)
    print("PROBE RESULTS")
    print("=" * 80)
    print(f"Events tested: {len(streams)}")
    print(f"Streams found: {sum(1 for s in streams if s.found)}")
    for stream in streams:
        channel = f" [{stream.candidate.channel}]" if stream.candidate.channel else ""
        print(f"\n{stream.candidate.title}{channel}")
        print(f"  {stream.candidate.source_link}")
        if not stream.found:
            print("  (no manifest)")
        for index, url in enumerate(stream.manifest_urls, start=1):
            print(f"  {index}. {url}")
    print("=" * 80)

    return 0 if any(s.found for s in streams) else 1


def main() -> int:
    load_dotenv()
    return asyncio.run(probe(parse_args()))


if __name__ == "__main__":
    sys.exit(main())
