"""Run the sync worker: ``python -m hntop [--once]``."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog
from pydantic import ValidationError

from hntop.config import Settings
from hntop.logs import setup_logging
from hntop.state import create_app_state

log = structlog.get_logger()


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="hntop", description="Hacker News ranking cache sync")
    parser.add_argument("--once", action="store_true", help="run a single sync cycle and exit")
    return parser.parse_args(argv)


async def _run(settings: Settings, once: bool) -> None:
    async with create_app_state(settings) as state:
        if once:
            await state.worker.sync_once()
            return

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                pass  # Windows
        log.info("sync_worker_started", interval_seconds=settings.worker.interval_seconds)
        await state.worker.run(stop)
        log.info("sync_worker_stopped")


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        settings = Settings()
    except ValidationError as exc:
        print(f"hntop: invalid configuration\n{exc}", file=sys.stderr)
        return 2

    setup_logging(settings.logging)
    asyncio.run(_run(settings, args.once))
    return 0


if __name__ == "__main__":
    sys.exit(main())
