"""
Cache maintenance job.

One-shot command for inspecting and clearing the persisted client state of a
MedVerse installation from a terminal. Local and session storage are backed by
JSON files under ``--state-dir``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from ..logging_config import setup_logging
from ..notify import create_notifier
from .collaborators import CallbackReloader, InMemoryQueryCache, JsonFileStorage
from .config import CacheManagerConfig, load_config
from .errors import CacheManagerError
from .eviction import SeverityLevel
from .manager import CacheManager

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="MedVerse cache maintenance")
    parser.add_argument("--config-file", help="YAML configuration file")
    parser.add_argument(
        "--state-dir",
        default=".medverse",
        help="Directory holding local.json and session.json",
    )
    parser.add_argument("--webhook-url", help="Also post notifications to this webhook")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("stats", help="Print a statistics snapshot as JSON")
    commands.add_parser("monitor", help="Print the monitor panel once")

    clear = commands.add_parser("clear", help="Clear caches at a severity level")
    clear.add_argument(
        "--level",
        default=SeverityLevel.MEDIUM.value,
        choices=[level.value for level in SeverityLevel],
    )
    clear.add_argument("--yes", action="store_true", help="Confirm a full reset")
    return parser


def build_manager(
    config: CacheManagerConfig, state_dir: Path, webhook_url: str | None = None
) -> CacheManager:
    notifier_config = {"webhook": {"enabled": bool(webhook_url), "url": webhook_url or ""}}
    return CacheManager(
        config,
        query_cache=InMemoryQueryCache(
            stale_after_ms=config.stale_query_age_ms,
            protected_fragments=config.protected_query_fragments,
        ),
        local_storage=JsonFileStorage(state_dir / "local.json"),
        session_storage=JsonFileStorage(state_dir / "session.json"),
        notifier=create_notifier(notifier_config),
        reloader=CallbackReloader(lambda: logger.info("Client reload requested")),
    )


async def run(args: argparse.Namespace, config: CacheManagerConfig) -> int:
    async with build_manager(config, Path(args.state_dir), args.webhook_url) as manager:
        if args.command == "stats":
            print(json.dumps(manager.get_cache_stats().to_dict(), indent=2))
            return 0

        if args.command == "monitor":
            print(manager.monitor(show_details=True).render())
            return 0

        try:
            result = await manager.clear_cache(args.level, confirmed=args.yes)
        except CacheManagerError as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return 1
        print(json.dumps(result.to_dict(), indent=2))
        return 0 if result.succeeded else 1


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config(args.config_file)
    setup_logging(service_name=config.service_name, environment=config.environment)
    return asyncio.run(run(args, config))


if __name__ == "__main__":
    sys.exit(main())
