import argparse
import asyncio
import logging
import time
from typing import List, Optional

from services.config import Config, load_config
from services.logging import setup_logging
from workflows.factory import Station, create_station_from_config

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="News-to-song radio station engine")
    subcommands = parser.add_subparsers(dest="command", required=True)

    serve = subcommands.add_parser("serve", help="Run the control API (and optionally the engine)")
    serve.add_argument("--host", default=None, help="Host to bind to (default: API_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Port to bind to (default: API_PORT)")
    serve.add_argument("--autostart", action="store_true", help="Start the production engine on boot")

    subcommands.add_parser("cycle", help="Run a single production cycle and exit")

    next_item = subcommands.add_parser("next", help="Resolve what plays next")
    next_item.add_argument("--log", action="store_true", help="Record the item as played")

    subcommands.add_parser("seed", help="Seed the default rotation pattern")
    subcommands.add_parser("init-db", help="Create database tables")

    return parser


async def run_cycle(station: Station) -> None:
    start_time = time.perf_counter()
    await station.initialize()
    try:
        result = await station.orchestrator.run_single_cycle()
    finally:
        await station.shutdown()

    logger.info(
        "Cycle finished",
        extra={
            "items_scraped": result.items_scraped,
            "stories_synthesized": result.stories_synthesized,
            "scripts_generated": result.scripts_generated,
            "tracks_rendered": result.tracks_rendered,
            "errors": result.errors,
        },
    )
    logger.info(f"Total time: {time.perf_counter() - start_time:.1f}s")


async def resolve_next(station: Station, log_playback: bool) -> None:
    await station.initialize()
    item = await station.scheduler.get_next_item()
    if item is None:
        print("No content available")
        return

    print(f"[{item.source.value}] {item.content_type.value}: {item.title} ({item.file_path})")
    if log_playback:
        await station.scheduler.log_playback(item)


async def seed(station: Station) -> None:
    # initialize() seeds the default pattern when none exists
    await station.initialize()
    steps = await station.scheduler.rotation()
    print(" -> ".join(s.content_type.value for s in steps))


async def init_db(station: Station) -> None:
    await station.store.init_tables()
    print(f"Database initialized at: {station.config.DATABASE_PATH}")


async def serve(station: Station, host: str, port: int, autostart: bool) -> None:
    from hypercorn.asyncio import serve as hypercorn_serve
    from hypercorn.config import Config as HypercornConfig

    from api.app import create_app

    app = create_app(station, autostart=autostart)

    server_config = HypercornConfig()
    server_config.bind = [f"{host}:{port}"]
    server_config.accesslog = "-"
    server_config.errorlog = "-"

    logger.info(f"Starting control API on http://{host}:{port}")
    await hypercorn_serve(app, server_config)


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    config: Config = load_config()
    setup_logging(config.LOG_LEVEL)

    station = create_station_from_config(config)

    if args.command == "serve":
        asyncio.run(serve(
            station,
            host=args.host or config.API_HOST,
            port=args.port or config.API_PORT,
            autostart=args.autostart,
        ))
    elif args.command == "cycle":
        asyncio.run(run_cycle(station))
    elif args.command == "next":
        asyncio.run(resolve_next(station, args.log))
    elif args.command == "seed":
        asyncio.run(seed(station))
    elif args.command == "init-db":
        asyncio.run(init_db(station))


if __name__ == "__main__":
    main()
