"""
Destination adapter entrypoint: drain one destination instance's subscriptions.

- Loads the adapter instance (``--instance-guid`` or ``ADAPTER_INSTANCE_GUID``)
- Builds the handler for its adapter kind from the stored settings
- Polls, processes and acknowledges until SIGINT/SIGTERM; in-flight messages
  finish before exit

Usage:
  python -m scripts.destination_worker --instance-guid 6f1c2a0e-...
"""

from __future__ import annotations

import argparse
import asyncio
import os
import signal
import uuid

from eai_broker.adapter_config import AdapterConfigStore
from eai_broker.adapter_kinds import CsvAdapterKind, CsvFileWriter
from eai_broker.config import Settings
from eai_broker.constants import ADAPTER_TYPE_DESTINATION, ENV_INSTANCE_GUID
from eai_broker.db import dispose_engine
from eai_broker.destination import DestinationWorker, Handler
from eai_broker.interfaces import InterfaceRegistry
from eai_broker.metrics import start_metrics_server
from eai_broker.process_log import configure_logging
from eai_broker.tracing import start_tracing


async def build_handler(adapter_name: str) -> Handler:
    settings = await AdapterConfigStore().get_all_settings(adapter_name, ADAPTER_TYPE_DESTINATION)
    if adapter_name.lower() == CsvAdapterKind.name.lower():
        return CsvFileWriter.from_settings({k: v for k, v in settings.items() if v is not None})
    raise SystemExit(f"No destination handler available for adapter '{adapter_name}'")


async def main(instance_guid: uuid.UUID) -> None:
    """Entrypoint for running a destination worker as a script."""
    settings = Settings()
    try:
        start_metrics_server(settings.metrics_port)
        print(f"Metrics server listening on :{settings.metrics_port} /metrics")
    except OSError:
        pass
    start_tracing("eai-destination")

    try:
        instance = await InterfaceRegistry().get_instance(instance_guid)
        if instance is None or instance.adapter_type != ADAPTER_TYPE_DESTINATION:
            raise SystemExit(f"{instance_guid} is not a destination adapter instance")
        handler = await build_handler(instance.adapter_name)
        worker = DestinationWorker(instance_guid, handler, settings=settings)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, worker.stop)

        print(f"Destination worker consuming {instance.interface_name} for {instance.instance_name} ({instance_guid})")
        await worker.run()
    finally:
        await dispose_engine()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run a destination adapter worker")
    parser.add_argument("--instance-guid", default=os.getenv(ENV_INSTANCE_GUID))
    args = parser.parse_args()
    if not args.instance_guid:
        parser.error(f"--instance-guid or {ENV_INSTANCE_GUID} is required")
    configure_logging()
    asyncio.run(main(uuid.UUID(args.instance_guid)))
