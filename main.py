#!/usr/bin/env python3
"""
Long-running entry point: sweeps every target on the configured cadence.

``python main.py health`` prints the last sweep checkpoint and exits non-zero
when the last sweep was paused by the circuit breaker.
"""

from __future__ import annotations

import asyncio
import json
import os
import signal
import sys
from pathlib import Path

import structlog

from rankharvest.config.config import Config, load_config
from rankharvest.container import DependencyContainer
from rankharvest.observability.logging import configure_logging
from rankharvest.scheduler import SweepScheduler
from rankharvest.utils.atomic import read_json

logger = structlog.get_logger(__name__)


def config_from_env() -> Config:
    config_path = os.getenv("RANKHARVEST_CONFIG")
    return load_config(Path(config_path) if config_path else None)


def health_check(config: Config) -> dict:
    state = read_json(config.sweep.state_file)
    if not state:
        return {"status": "unknown", "reason": "no sweep recorded"}
    healthy = not (state.get("paused") and state.get("pause_reason") == "circuit_breaker")
    return {"status": "healthy" if healthy else "unhealthy", **state}


async def run_forever(config: Config) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with DependencyContainer(config=config).lifecycle() as container:
        scheduler: SweepScheduler = await container.get_scheduler()
        artifacts = await container.get_artifacts()
        interval = config.sweep.interval_minutes * 60

        while not stop.is_set():
            sweep = asyncio.create_task(scheduler.sweep())
            stopper = asyncio.create_task(stop.wait())
            await asyncio.wait({sweep, stopper}, return_when=asyncio.FIRST_COMPLETED)
            if not sweep.done():
                scheduler.pause("shutdown")
                await sweep
            stopper.cancel()

            state = sweep.result()
            artifacts.cleanup_old_artifacts()
            logger.info("Next sweep scheduled", minutes=config.sweep.interval_minutes, **state.summary())
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    logger.info("RankHarvest stopped")


def main() -> None:
    config = config_from_env()
    if len(sys.argv) > 1 and sys.argv[1] == "health":
        health = health_check(config)
        print(json.dumps(health, indent=2))
        sys.exit(0 if health["status"] != "unhealthy" else 1)

    configure_logging(config.monitoring)
    asyncio.run(run_forever(config))


if __name__ == "__main__":
    main()
