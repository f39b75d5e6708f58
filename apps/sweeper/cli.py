"""Run the stale sweep from cron or a terminal."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from core.bootstrap import build_components
from core.config import LivenessSettings
from otel_init import attach_logging_handler_simple, setup_telemetry

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Liveness stale sweep")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", default=True, help="run a single tick (default)")
    mode.add_argument("--loop", action="store_true", help="keep sweeping every period")
    parser.add_argument("--period-seconds", type=float, default=None)
    parser.add_argument("--max-concurrency", type=int, default=None)
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def _settings(args: argparse.Namespace) -> LivenessSettings:
    settings = LivenessSettings.from_env()
    overrides = {}
    if args.period_seconds is not None:
        overrides["sweep_period_seconds"] = args.period_seconds
    if args.max_concurrency is not None:
        overrides["sweep_max_concurrency"] = args.max_concurrency
    if overrides:
        settings = LivenessSettings.model_validate({**settings.model_dump(), **overrides})
    return settings


async def run(args: argparse.Namespace) -> int:
    components = build_components(_settings(args))
    await components.connect()
    try:
        if args.loop:
            await components.scheduler.start()
            while components.scheduler.running:
                await asyncio.sleep(1)
            return 0

        summary = await components.scheduler.run_sweep_tick()
        print(json.dumps(summary.as_dict(), indent=2))
        return 0 if summary.result == "completed" else 1
    finally:
        await components.close()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), stream=sys.stderr)
    setup_telemetry(service_name="liveness-sweeper")
    attach_logging_handler_simple()

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Sweep interrupted")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
