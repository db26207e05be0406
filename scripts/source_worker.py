"""
Source adapter entrypoint: ingest a delimited file into the MessageBox.

- Resolves the interface's enabled source instance (or ``--instance-guid`` /
  ``ADAPTER_INSTANCE_GUID`` when running inside a compute unit)
- Infers the column schema, validates every row and publishes one message per
  accepted record to all enabled destinations of the interface

Usage:
  python -m scripts.source_worker --interface orders --file inbound/orders.csv
  python -m scripts.source_worker --interface orders --file orders.txt --delimiter "║"
"""

from __future__ import annotations

import argparse
import asyncio
import os
import uuid

from eai_broker.adapter_config import AdapterConfigStore
from eai_broker.adapter_kinds import get_adapter_kind
from eai_broker.config import Settings
from eai_broker.constants import ADAPTER_TYPE_SOURCE, ENV_INSTANCE_GUID
from eai_broker.db import dispose_engine
from eai_broker.ingestion import ingest_csv
from eai_broker.interfaces import InterfaceRegistry
from eai_broker.message_box import MessageBox
from eai_broker.models import ProducerIdentity
from eai_broker.process_log import configure_logging
from eai_broker.tracing import get_tracer, start_tracing


async def run(interface_name: str, path: str, instance_guid: uuid.UUID | None, delimiter: str | None) -> int:
    """Ingest ``path`` on ``interface_name``; returns the number of rejected rows."""
    settings = Settings()
    registry = InterfaceRegistry()
    try:
        interface = await registry.get_interface(interface_name)
        if interface is None or not interface.is_enabled:
            print(f"Interface '{interface_name}' is missing or disabled; nothing ingested")
            return 0
        if instance_guid is not None:
            source = await registry.get_instance(instance_guid)
            if source is None or source.adapter_type != ADAPTER_TYPE_SOURCE or not source.is_enabled:
                raise SystemExit(f"{instance_guid} is not an enabled source instance")
        else:
            source = await registry.enabled_source(interface_name)
            if source is None:
                raise SystemExit(f"Interface '{interface_name}' has no enabled source instance")

        if delimiter is None:
            stored = await AdapterConfigStore().get_all_settings(source.adapter_name, ADAPTER_TYPE_SOURCE)
            resolved = get_adapter_kind(source.adapter_name).with_defaults(stored)
            delimiter = resolved.get("FieldSeparator") or ","

        producer = ProducerIdentity(
            adapter_name=source.adapter_name,
            adapter_type=ADAPTER_TYPE_SOURCE,
            instance_guid=source.adapter_instance_guid,
        )
        with get_tracer("eai-source").start_as_current_span("source.ingest"):
            report = await ingest_csv(
                path, interface_name, producer, box=MessageBox(registry=registry, settings=settings), delimiter=delimiter
            )
        print(
            f"Ingested {report.rows_read} rows from {path}: published={report.published} "
            f"rejected={report.rejected} nulled_fields={report.nulled_fields}"
        )
        if report.cancelled:
            print("Source instance was disabled; ingestion stopped early")
        for error in report.errors:
            print(f"  {error}")
        return report.rejected
    finally:
        await dispose_engine()


def main() -> None:
    parser = argparse.ArgumentParser(description="Ingest a delimited file into the MessageBox")
    parser.add_argument("--interface", required=True)
    parser.add_argument("--file", required=True, dest="path")
    parser.add_argument("--instance-guid", type=uuid.UUID, default=os.getenv(ENV_INSTANCE_GUID) or None)
    parser.add_argument("--delimiter", help="Column separator (default: the source's FieldSeparator setting)")
    args = parser.parse_args()

    configure_logging()
    start_tracing("eai-source")
    asyncio.run(run(args.interface, args.path, args.instance_guid, args.delimiter))


if __name__ == "__main__":
    main()
