"""Command line entry point: python -m netwatch."""

from __future__ import annotations

import argparse
import asyncio
import signal
from typing import Optional

import structlog
import uvicorn

from netwatch.api import create_app
from netwatch.config import ConfigError, NetwatchConfig, load_config, parse_duration, validate_config
from netwatch.log import configure_logging
from netwatch.runtime.bootstrap import build_host

logger = structlog.get_logger(__name__)


async def run_monitor(
    cfg: NetwatchConfig, *, duration: Optional[float] = None, api: bool = False, once: bool = False
) -> int:
    host = build_host(cfg)
    if once:
        executed = await host.run_once()
        logger.info("Single pass complete", executions=executed)
        return 0

    loop = asyncio.get_running_loop()

    def request_stop() -> None:
        loop.create_task(host.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_stop)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handler support
            pass

    server: Optional[uvicorn.Server] = None
    server_task: Optional[asyncio.Task] = None
    if api:
        server = uvicorn.Server(
            uvicorn.Config(
                create_app(host),
                host=cfg.api.host,
                port=cfg.api.port,
                log_level=cfg.log_level.lower(),
            )
        )
        server_task = loop.create_task(server.serve())
        server_task.add_done_callback(lambda _: request_stop())
        logger.info("Diagnostics API enabled", host=cfg.api.host, port=cfg.api.port)

    try:
        await host.run(duration)
    finally:
        await host.stop()
        if server is not None and server_task is not None:
            server.should_exit = True
            await asyncio.gather(server_task, return_exceptions=True)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Async network health monitor")
    parser.add_argument("--config", default=None, help="Path to YAML config (default: $NETWATCH_CONFIG or ./netwatch.yaml)")
    parser.add_argument("--duration", default=None, help="Stop after this long, e.g. 90s or 00:05:00")
    parser.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, WARNING, ...)")
    parser.add_argument("--api", action="store_true", help="Serve the diagnostics API while monitoring")
    parser.add_argument("--once", action="store_true", help="Probe every target once, write the results and exit")
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        configure_logging(args.log_level or "INFO")
        logger.error("Invalid configuration", error=str(e))
        return 2

    if args.log_level:
        cfg.log_level = args.log_level
    configure_logging(cfg.log_level)

    result = validate_config(cfg)
    for warning in result.warnings:
        logger.warning("Config warning", detail=warning)
    if not result.ok:
        for error in result.errors:
            logger.error("Config error", detail=error)
        return 2

    duration = parse_duration(args.duration, 0.0) if args.duration else None
    if duration is not None and duration <= 0:
        logger.error("Invalid duration", duration=args.duration)
        return 2
    if args.once and (duration is not None or args.api):
        logger.error("--once cannot be combined with --duration or --api")
        return 2

    return asyncio.run(run_monitor(cfg, duration=duration, api=bool(args.api), once=bool(args.once)))


if __name__ == "__main__":
    raise SystemExit(main())
