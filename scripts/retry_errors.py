"""
Retry failed deliveries by moving Error subscriptions back to Pending.

Why:
- A destination that failed on a message keeps that message in the MessageBox
  (Error blocks garbage collection). Once the cause is fixed, operators
  re-queue the failed subscriptions; the destination worker picks them up on
  its next poll and ``retry_count`` records how often this happened.

Usage examples:
- See what would be retried on an interface:
  python -m scripts.retry_errors --interface orders --dry-run

- Retry only one destination instance:
  python -m scripts.retry_errors --interface orders --instance-guid 6f1c... 

- Retry everything failed on the interface:
  python -m scripts.retry_errors --interface orders
"""

import argparse
import asyncio
import uuid

from eai_broker.db import dispose_engine
from eai_broker.subscriptions import SubscriptionTracker


async def retry(interface_name: str, instance_guid: uuid.UUID | None, *, dry_run: bool, limit: int) -> int:
    """Retry Error subscriptions of an interface, or list them with ``dry_run``.

    Returns the number of subscriptions flipped (or that would be flipped).
    """
    tracker = SubscriptionTracker()
    try:
        if dry_run:
            rows = await tracker.error_subscriptions(interface_name, instance_guid, limit=limit)
            if not rows:
                print("No failed subscriptions found")
                return 0
            total = len(rows)
            for idx, row in enumerate(rows, start=1):
                print(
                    f"[{idx}/{total}] message={row.message_id} subscriber={row.subscriber_instance_guid} "
                    f"retries={row.retry_count} error={row.error_message}"
                )
            print(f"Dry-run: would retry {total} subscriptions on interface={interface_name}")
            return total

        count = await tracker.retry_errors(interface_name, instance_guid)
        print(f"Retried {count} subscriptions on interface={interface_name}")
        return count
    finally:
        await dispose_engine()


def main() -> None:
    """CLI entrypoint for retrying failed subscriptions. See module docstring for examples."""
    parser = argparse.ArgumentParser(description="Retry failed MessageBox subscriptions")
    parser.add_argument("--interface", required=True)
    parser.add_argument("--instance-guid", type=uuid.UUID, help="Only this destination instance")
    parser.add_argument("--limit", type=int, default=100, help="Rows listed in --dry-run mode")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    asyncio.run(retry(args.interface, args.instance_guid, dry_run=args.dry_run, limit=args.limit))


if __name__ == "__main__":
    main()
