"""Command-line entry points: run the service or a single sweep."""
import argparse
import asyncio
import logging
import os
from typing import Dict

from .config import settings
from .database import init_db, close_db
from .services import bootstrap_services
from .utils.logging_utils import configure_logging

logger = logging.getLogger(__name__)


def _print_stats(title: str, stats: Dict[str, int]):
    print(title)
    width = max(len(key) for key in stats) if stats else 0
    for key, value in stats.items():
        print(f"  {key.ljust(width)}  {value}")


async def _run_sweep(command: str, dry_run: bool = False) -> int:
    await init_db()
    # One-shot runs exit after the sweep; recovery polls belong to the service
    services = await bootstrap_services(settings, recovery_poll_enabled=False)
    try:
        if command == "check-monitors":
            _print_stats("Monitor sweep", await services.scheduler.sweep_due_monitors())
        elif command == "check-ssl":
            _print_stats("SSL sweep", await services.scheduler.sweep_ssl())
        elif command == "check-domains":
            _print_stats("Domain sweep", await services.scheduler.sweep_domains())
        elif command == "cleanup":
            title = "Records past retention (dry run)" if dry_run else "Deleted records"
            _print_stats(title, await services.scheduler.cleanup_old_records(dry_run=dry_run))
    finally:
        await services.shutdown()
        await close_db()
    return 0


def _serve() -> int:
    import uvicorn

    from .main import create_app

    uvicorn.run(create_app(), host="0.0.0.0", port=settings.web_port, log_config=None)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="uptimewatch", description="Website uptime and expiry monitor")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", settings.log_level),
        help="Logging level (DEBUG, INFO, WARNING, ...)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("serve", help="Run the API and the periodic scheduler")
    subparsers.add_parser("check-monitors", help="Check every monitor that is due, once")
    subparsers.add_parser("check-ssl", help="Inspect certificates of HTTPS monitors, once")
    subparsers.add_parser("check-domains", help="Refresh domain expiry for all monitors, once")
    cleanup = subparsers.add_parser("cleanup", help="Delete checks and closed downtimes past retention")
    cleanup.add_argument("--dry-run", action="store_true", help="Only count what would be deleted")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    # Telegram bot token is part of the request URL
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    if args.command == "serve":
        return _serve()
    return asyncio.run(_run_sweep(args.command, dry_run=getattr(args, "dry_run", False)))
