from __future__ import annotations

import argparse
import asyncio
import logging

from aiohttp import web

from locations_offline.agent.agent import OfflineAgent
from locations_offline.config import YamlConfigLoader
from locations_offline.config.models import AppConfig, ConfigLoadRequest
from locations_offline.logging import init_logging
from locations_offline.server import create_app

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="locations-offline", description="Offline agent for the saved-locations app")
    parser.add_argument(
        "--config",
        default="data/config/config.yaml",
        help="Path to config.yaml (default: data/config/config.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    # Command: serve
    serve_parser = subparsers.add_parser("serve", help="Run the offline proxy in front of the backend")
    serve_parser.add_argument(
        "--run-seconds",
        type=float,
        default=None,
        help="Serve for N seconds then exit (useful for smoke testing).",
    )

    subparsers.add_parser("sync", help="Replay queued photo uploads once")
    subparsers.add_parser("status", help="Print offline status and queue size")
    subparsers.add_parser("clear_cache", help="Delete every response cache")
    subparsers.add_parser("requeue", help="Move dead-lettered uploads back into the queue")

    return parser


async def _load_config(args: argparse.Namespace) -> AppConfig:
    loader = YamlConfigLoader()
    request = ConfigLoadRequest(
        yaml_path=args.config,
    )
    return await loader.load(request)


async def _serve(config: AppConfig, args: argparse.Namespace) -> None:
    logger.info(
        "Starting offline agent. listen=%s:%s upstream=%s cache_version=%s",
        config.server.host,
        config.server.port,
        config.server.upstream_base_url,
        config.cache.version,
    )
    agent = OfflineAgent(config)
    runner = web.AppRunner(create_app(config, agent))
    await runner.setup()
    try:
        site = web.TCPSite(runner, config.server.host, config.server.port)
        await site.start()
        if args.run_seconds is not None:
            await asyncio.sleep(args.run_seconds)
        else:
            await asyncio.Event().wait()
    finally:
        await runner.cleanup()


async def _sync_once(config: AppConfig) -> None:
    agent = OfflineAgent(config)
    try:
        await agent.queue_store.recover()
        report = await agent.handle_sync()
        logger.info(
            "Manual sync done. attempted=%d completed=%d failed=%d dead_lettered=%d",
            report.attempted,
            report.completed,
            report.failed,
            report.dead_lettered,
        )
    finally:
        await agent.stop()


async def _status(config: AppConfig) -> None:
    agent = OfflineAgent(config)
    queued = await agent.queue_store.count("queued")
    failed = await agent.queue_store.count("failed")
    caches = await agent.cache_store.keys()
    print(f"queued_uploads={queued} failed_uploads={failed} caches={','.join(caches) or '-'}")


async def _clear_cache(config: AppConfig) -> None:
    agent = OfflineAgent(config)
    deleted = await agent.clear_all_caches()
    logger.info("Caches cleared. deleted=%d", deleted)


async def _requeue(config: AppConfig) -> None:
    agent = OfflineAgent(config)
    count = await agent.queue_store.requeue_failed()
    logger.info("Failed uploads requeued. count=%d", count)


async def _main_async() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    config = await _load_config(args)
    init_logging(config.logging)

    if args.command == "serve":
        await _serve(config, args)
    elif args.command == "sync":
        await _sync_once(config)
    elif args.command == "status":
        await _status(config)
    elif args.command == "clear_cache":
        await _clear_cache(config)
    elif args.command == "requeue":
        await _requeue(config)


def main() -> None:
    try:
        asyncio.run(_main_async())
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")


if __name__ == "__main__":
    main()
