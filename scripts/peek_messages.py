"""
Print pending MessageBox entries for an interface as JSON lines.

``--production-errors`` lists messages whose production failed or was never
confirmed instead; those are kept for inspection and never distributed.

Usage:
  python -m scripts.peek_messages --interface orders
  python -m scripts.peek_messages --interface orders --adapter CSV --limit 5
  python -m scripts.peek_messages --interface orders --production-errors
"""

import argparse
import asyncio
import json

from eai_broker.constants import STATUS_ERROR
from eai_broker.db import dispose_engine
from eai_broker.message_box import MessageBox
from eai_broker.subscriptions import SubscriptionTracker


async def pending_lines(interface_name: str, adapter_name: str | None, limit: int) -> list[dict]:
    rows = await SubscriptionTracker().pending_for_interface(interface_name, adapter_name, limit=limit)
    return [
        {
            "message_id": str(row.message_id),
            "subscriber_adapter_name": row.subscriber_adapter_name,
            "subscriber_instance_guid": str(row.subscriber_instance_guid),
            "status": row.status,
            "retry_count": row.retry_count,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
        for row in rows
    ]


async def production_error_lines(interface_name: str, limit: int) -> list[dict]:
    rows = await MessageBox().list_messages(interface_name, status=STATUS_ERROR, limit=limit)
    return [
        {
            "message_id": str(row.message_id),
            "producing_adapter_name": row.producing_adapter_name,
            "producing_instance_guid": str(row.producing_instance_guid) if row.producing_instance_guid else None,
            "status": row.status,
            "error_message": row.error_message,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
        for row in rows
    ]


async def main(interface_name: str, adapter_name: str | None, limit: int, production_errors: bool) -> None:
    try:
        if production_errors:
            lines = await production_error_lines(interface_name, limit)
        else:
            lines = await pending_lines(interface_name, adapter_name, limit)
    finally:
        await dispose_engine()
    if not lines:
        print(json.dumps({"empty": True}))
        return
    for line in lines:
        print(json.dumps(line))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Peek at pending MessageBox subscriptions")
    parser.add_argument("--interface", required=True)
    parser.add_argument("--adapter", help="Only subscriptions of this destination adapter kind")
    parser.add_argument("--limit", type=int, default=20)
    parser.add_argument("--production-errors", action="store_true", help="List messages whose production failed")
    args = parser.parse_args()
    asyncio.run(main(args.interface, args.adapter, args.limit, args.production_errors))
