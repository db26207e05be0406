"""
Garbage-collect fully delivered MessageBox messages.

A message is deleted once every one of its subscriptions is Processed.
Messages with Pending or Error subscriptions are never touched.

Environment:
  - DATABASE_URL
  - SWEEP_INTERVAL_SECONDS (default 30)
  - SWEEP_BATCH_SIZE (default 500)

Usage:
  python -m scripts.sweeper            # loop until SIGINT/SIGTERM
  python -m scripts.sweeper --once     # one pass, e.g. from cron
"""

from __future__ import annotations

import argparse
import asyncio
import signal

from eai_broker.config import Settings
from eai_broker.db import dispose_engine
from eai_broker.message_box import MessageBox
from eai_broker.metrics import start_metrics_server
from eai_broker.process_log import configure_logging
from eai_broker.tracing import start_tracing


async def sweep_until_clean(box: MessageBox, batch_size: int) -> int:
    """Sweep in batches until a pass deletes fewer than ``batch_size`` messages."""
    total = 0
    while True:
        deleted = await box.sweep(batch_size)
        total += deleted
        if deleted < batch_size:
            return total


async def run(once: bool) -> None:
    settings = Settings()
    box = MessageBox(settings=settings)
    if once:
        deleted = await sweep_until_clean(box, settings.sweep_batch_size)
        print(f"Deleted {deleted} fully delivered messages")
        await dispose_engine()
        return

    try:
        start_metrics_server(settings.metrics_port)
        print(f"Metrics server listening on :{settings.metrics_port} /metrics")
    except OSError:
        pass
    start_tracing("eai-sweeper")

    stopping = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stopping.set)

    while not stopping.is_set():
        deleted = await sweep_until_clean(box, settings.sweep_batch_size)
        if deleted:
            print(f"Deleted {deleted} fully delivered messages")
        try:
            await asyncio.wait_for(stopping.wait(), timeout=settings.sweep_interval_seconds)
        except asyncio.TimeoutError:
            pass
    await dispose_engine()


def main() -> None:
    """CLI entrypoint for the garbage-collection sweep."""
    parser = argparse.ArgumentParser(description="Delete fully delivered MessageBox messages")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    args = parser.parse_args()
    configure_logging()
    asyncio.run(run(args.once))


if __name__ == "__main__":
    main()
