"""Command-line entry point: one reconciliation cycle (``--once``) or the HTTP service."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path

import httpx
import structlog

from tunnel_watch.cycle import TunnelWatch
from tunnel_watch.errors import ConfigurationError
from tunnel_watch.server import serve
from tunnel_watch.settings import Settings, load_settings


logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO") -> None:
    numeric = getattr(logging, str(level).upper(), logging.INFO)
    logging.basicConfig(level=numeric, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    # Bot tokens are embedded in Telegram API URLs; keep request lines out of the logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


async def run_once(settings: Settings) -> int:
    async with httpx.AsyncClient() as client:
        watch = TunnelWatch.from_settings(settings, client)
        try:
            report = await watch.run_cycle()
        except ConfigurationError as exc:
            logger.error("configuration_error", error=str(exc))
            return 2
    print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2, sort_keys=True))
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Tunnel health reconciler with remediation and Telegram alerts")
    parser.add_argument("--config", default=os.getenv("TUNNEL_WATCH_CONFIG"), help="Optional YAML settings overlay")
    parser.add_argument("--once", action="store_true", help="Run one reconciliation cycle and exit")
    parser.add_argument("--host", default=None, help="Bind host for the HTTP service")
    parser.add_argument("--port", type=int, default=None, help="Bind port for the HTTP service")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (INFO, WARNING, ...)",
    )
    args = parser.parse_args()

    configure_logging(args.log_level)
    settings = load_settings(Path(args.config) if args.config else None)

    if args.once:
        return asyncio.run(run_once(settings))

    serve(settings, host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
