#!/usr/bin/env python3
"""
Page performance CLI - measure FCP/LCP of a page under content modifications.

Usage:
    python perf_cli.py https://example.com --runs 3 --mode pagespeed-mobile \
        --block adtrack.js --defer lib.js --find "<h1>.*?</h1>" --replace ""
"""

import sys
import base64
import os
import json
import asyncio
import argparse

# Add project root to path
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from perfprobe.config import EngineConfig, configure_logging
from perfprobe.core.orchestrator import Orchestrator, handle_request


def build_payload(args: argparse.Namespace) -> dict:
    rules = {'block': args.block, 'defer': args.defer}
    if args.find is not None:
        rules['html_replace'] = {'find': args.find, 'replace': args.replace}

    return {
        'url': args.url,
        'rules': rules,
        'mode': args.mode,
        'runs': args.runs,
        'disableCache': args.disable_cache,
        'dryRun': args.dry_run,
    }


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Measure paint timings of a page under modification rules")
    parser.add_argument('url', nargs='?', help="Page to measure")
    parser.add_argument('--mode', default='custom',
                        choices=['custom', 'pagespeed-mobile', 'pagespeed-desktop'])
    parser.add_argument('--runs', type=int, default=3)
    parser.add_argument('--block', action='append', default=[], help="Abort requests whose URL contains this")
    parser.add_argument('--defer', action='append', default=[], help="Defer scripts whose src contains this")
    parser.add_argument('--find', help="Regex to replace in the HTML document")
    parser.add_argument('--replace', default='', help="Replacement text for --find")
    parser.add_argument('--disable-cache', action='store_true')
    parser.add_argument('--dry-run', action='store_true')
    parser.add_argument('--screenshot', help="Write the screenshot PNG to this path")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main CLI function."""
    args = parse_args(argv)
    config = EngineConfig.from_env()
    configure_logging(config.log_level)

    orchestrator = Orchestrator(config=config)
    status, body = asyncio.run(handle_request(build_payload(args), orchestrator))

    screenshot = body.get('screenshot')
    if args.screenshot and screenshot:
        with open(args.screenshot, 'wb') as f:
            f.write(base64.b64decode(screenshot))
        print(f"Screenshot saved to {args.screenshot}")

    # Keep the terminal readable
    if screenshot:
        body = dict(body, screenshot=f"<{len(screenshot)} base64 chars>")
    print(json.dumps(body, indent=2))
    return 0 if status == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
