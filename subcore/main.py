#!/usr/bin/env python3
"""
Command-line entry point for subcore.

WORKFLOW:
1. Parse the command (current, all, cycle) and flags
2. Configure logging (debug when --debug/-d or SUBCORE_DEBUG is set)
3. Build a UsageService over the shared cache directory
4. Run the command once and print the resulting state as JSON

Several terminals can run this at the same time; they share cache.json and
only one of them talks to each provider per refresh interval.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Optional

from .services.quota_fetchers.detection import detect_provider_from_model
from .utils.paths import CorePaths
from .viewmodels.usage_service import UsageService

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def is_debug_requested(argv: list[str]) -> bool:
    """--debug / -d on the command line, or SUBCORE_DEBUG=1/true/yes."""
    return (
        '--debug' in argv
        or '-d' in argv
        or os.getenv('SUBCORE_DEBUG', '').lower() in ('1', 'true', 'yes')
    )


def setup_logging(debug: bool = False) -> None:
    """
    Configure logging to stderr (stdout carries the JSON output).

    In debug mode our own modules and aiohttp log at DEBUG; asyncio stays
    at INFO because its DEBUG output is mostly transport noise.
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    if debug:
        logging.getLogger('subcore').setLevel(logging.DEBUG)
        logging.getLogger('aiohttp').setLevel(logging.DEBUG)
        logging.getLogger('aiohttp.client').setLevel(logging.DEBUG)
        logging.getLogger('asyncio').setLevel(logging.INFO)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='subcore',
        description='Show subscription usage for AI coding providers.',
    )
    parser.add_argument(
        'command',
        nargs='?',
        default='current',
        choices=('current', 'all', 'cycle'),
        help='current provider (default), all enabled providers, or cycle to the next provider',
    )
    parser.add_argument('--force', action='store_true', help='ignore the cache TTL')
    parser.add_argument('--provider', help='model provider string used for auto-detection')
    parser.add_argument('--model', help='model id used for auto-detection')
    parser.add_argument('--home', help='directory holding cache.json and settings.json')
    parser.add_argument('-d', '--debug', action='store_true', help='enable debug logging')
    return parser


async def run(args: argparse.Namespace) -> dict:
    service = UsageService(paths=CorePaths.default(args.home), watch_cache=False)
    model = {'provider': args.provider, 'id': args.model} if (args.provider or args.model) else None
    if model is not None:
        logger.debug("Detected provider for %s: %s", model, detect_provider_from_model(model))

    try:
        update = await service.on_session_start(model)
        if args.command == 'all':
            entries = await service.get_entries(force=args.force)
            return {'entries': [entry.to_wire() for entry in entries]}
        if args.command == 'cycle':
            update = await service.cycle_provider()
        elif args.force:
            update = await service.refresh(force=True)
        return update.to_wire()
    finally:
        await service.on_shutdown()


def main(argv: Optional[list[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    args = build_parser().parse_args(argv)
    setup_logging(args.debug or is_debug_requested(argv))

    payload = asyncio.run(run(args))
    print(json.dumps(payload, indent=2))
    return 0


if __name__ == '__main__':
    sys.exit(main())
