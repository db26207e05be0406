"""Destination worker: drain one destination instance's pending subscriptions.

Concurrency model:
- Each poll reads up to ``CONSUMER_BATCH_SIZE`` pending messages, oldest first
- At most ``CONSUMER_CONCURRENCY`` handlers run at once (semaphore)
- A poll that finds nothing backs off along ``POLL_DELAYS_MS``; any work
  resets the backoff
- ``stop()`` stops claiming new messages; handlers already running finish
  and acknowledge
- Every poll re-reads the instance; while it is disabled (or deleted) the
  worker claims nothing and keeps backing off, so re-enabling resumes it;
  messages already fetched in the current batch still run to Processed/Error

Delivery is at-least-once: a crash between the handler and its
acknowledgement leaves the subscription ``Pending`` and the message is
handed out again, so handlers must be idempotent.

Example:
```python
worker = DestinationWorker(instance_guid, CsvFileWriter("outbound"))
await worker.run()
```
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Optional

from opentelemetry import context  # type: ignore

from eai_broker.config import Settings
from eai_broker.interfaces import InterfaceRegistry
from eai_broker.metrics import DESTINATION_IN_FLIGHT, DESTINATION_PROCESS_LATENCY_SECONDS
from eai_broker.orm_models import MessageBoxMessage
from eai_broker.retry import next_delay_ms
from eai_broker.subscriptions import SubscriptionTracker
from eai_broker.tracing import extract_trace_context, get_tracer


logger = logging.getLogger(__name__)

Handler = Callable[[MessageBoxMessage, dict[str, Any]], Awaitable[Optional[dict[str, Any]]]]


class DestinationWorker:
    """Poll, process and acknowledge messages for one destination adapter instance.

    Properties:
    - `instance_guid`: destination adapter instance whose subscriptions are drained
    - `handler`: ``async (message, payload) -> details | None``; raising marks the subscription Error
    - `batch_size` / `concurrency` / `poll_delays_ms`: default from ``Settings``
    """

    def __init__(
        self,
        instance_guid: uuid.UUID,
        handler: Handler,
        *,
        tracker: SubscriptionTracker | None = None,
        instances: InterfaceRegistry | None = None,
        settings: Settings | None = None,
        batch_size: int | None = None,
        concurrency: int | None = None,
        poll_delays_ms: list[int] | None = None,
    ):
        settings = settings or Settings()
        self.instance_guid = instance_guid
        self.handler = handler
        self.tracker = tracker or SubscriptionTracker()
        self.instances = instances or InterfaceRegistry()
        self.batch_size = batch_size or settings.consumer_batch_size
        self.concurrency = concurrency or settings.consumer_concurrency
        self.poll_delays_ms = poll_delays_ms or settings.poll_delays_ms
        self._stopping = asyncio.Event()
        self._sem = asyncio.Semaphore(self.concurrency)
        self._tracer = get_tracer("eai-destination")
        self.processed = 0
        self.failed = 0
        self._was_enabled = True

    def stop(self) -> None:
        self._stopping.set()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    async def is_enabled(self) -> bool:
        instance = await self.instances.get_instance(self.instance_guid)
        enabled = instance is not None and instance.is_enabled
        if not enabled and self._was_enabled:
            logger.info(
                "destination instance disabled; not claiming new messages", extra={"instance_guid": self.instance_guid}
            )
        self._was_enabled = enabled
        return enabled

    async def run(self) -> None:
        """Poll until ``stop()`` is called."""
        idle = 0
        logger.info("destination worker started", extra={"instance_guid": self.instance_guid})
        while not self._stopping.is_set():
            handled = await self.run_once()
            if handled:
                idle = 0
                continue
            delay_s = next_delay_ms(idle, self.poll_delays_ms, jitter=0.1) / 1000.0
            idle += 1
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay_s)
            except asyncio.TimeoutError:
                pass
        logger.info(
            "destination worker stopped (processed=%d failed=%d)",
            self.processed,
            self.failed,
            extra={"instance_guid": self.instance_guid},
        )

    async def run_once(self) -> int:
        """Process one batch; returns the number of messages handled.

        Returns 0 without claiming anything while the instance is disabled.
        """
        if not await self.is_enabled():
            return 0
        messages = await self.tracker.pending_for_subscriber(self.instance_guid, limit=self.batch_size)
        if not messages:
            return 0
        results = await asyncio.gather(*(self._guarded(m) for m in messages))
        return sum(1 for handled in results if handled)

    async def _guarded(self, message: MessageBoxMessage) -> bool:
        async with self._sem:
            if self._stopping.is_set():
                return False
            DESTINATION_IN_FLIGHT.labels(instance=str(self.instance_guid)).inc()
            try:
                await self._process(message)
            except Exception:  # noqa: BLE001
                # Acknowledgement failed; the row stays Pending and is redelivered
                logger.exception(
                    "could not acknowledge message %s", message.message_id, extra={"instance_guid": self.instance_guid}
                )
            finally:
                DESTINATION_IN_FLIGHT.labels(instance=str(self.instance_guid)).dec()
            return True

    async def _process(self, message: MessageBoxMessage) -> None:
        start_ts = time.perf_counter()
        log_extra = {"interface": message.interface_name, "instance_guid": self.instance_guid}
        token = context.attach(extract_trace_context(message))
        try:
            with self._tracer.start_as_current_span("destination.process") as span:
                span.set_attribute("eai.message_id", str(message.message_id))
                span.set_attribute("eai.interface", message.interface_name)
                try:
                    result = await self.handler(message, message.payload)
                except Exception as exc:  # noqa: BLE001
                    elapsed_ms = int((time.perf_counter() - start_ts) * 1000)
                    self.failed += 1
                    logger.warning("handler failed for message %s: %s", message.message_id, exc, extra=log_extra)
                    await self.tracker.mark_error(
                        message.message_id,
                        self.instance_guid,
                        f"{type(exc).__name__}: {exc}",
                        {"duration_ms": elapsed_ms},
                    )
                    return
                elapsed_ms = int((time.perf_counter() - start_ts) * 1000)
                details = {"duration_ms": elapsed_ms}
                if result:
                    details["result"] = result
                await self.tracker.mark_processed(message.message_id, self.instance_guid, details)
                self.processed += 1
        finally:
            context.detach(token)
            DESTINATION_PROCESS_LATENCY_SECONDS.observe(time.perf_counter() - start_ts)
