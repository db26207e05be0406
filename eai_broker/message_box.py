"""The MessageBox: durable staging of records between source and destination adapters.

A source adapter publishes one typed record at a time. ``publish`` writes the
message row together with one ``Pending`` subscription per destination
instance enabled on the interface at that moment, in a single transaction,
then marks the message ``Processed`` (production succeeded). Destinations
consume through ``SubscriptionTracker``; ``sweep`` deletes a message once all
of its subscriptions are ``Processed``.

Guarantees:
- At-least-once delivery to every subscriber in the publish-time snapshot.
- A message is never deleted while any of its subscriptions is ``Pending``
  or ``Error``; the sweep re-checks this inside its DELETE.
- A message published with no enabled destinations gets no subscriptions and
  is eligible for the next sweep.

Publish-side idempotency: the SHA-256 of (interface, producer instance,
canonical payload) is stored on the row; publishing the same hash again
inside ``Settings.publish_dedup_window_hours`` returns the existing id.

Example:
    >>> box = MessageBox()
    >>> message_id = await box.publish(
    ...     "orders",
    ...     ProducerIdentity(adapter_name="CSV", adapter_type="Source", instance_guid=source_guid),
    ...     headers=["id", "qty"],
    ...     schema=schema,
    ...     record={"id": 1, "qty": 5},
    ... )
    >>> await box.sweep()
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import timedelta
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import delete, select, update

from eai_broker.config import ENVIRONMENT, Settings
from eai_broker.constants import STATUS_ERROR, STATUS_PENDING, STATUS_PROCESSED
from eai_broker.db import get_session
from eai_broker.dedup import compute_message_hash
from eai_broker.errors import AdapterInstanceDisabledError, ProductionError
from eai_broker.interfaces import InterfaceRegistry
from eai_broker.metrics import (
    MESSAGEBOX_DEDUPLICATED_TOTAL,
    MESSAGEBOX_PUBLISHED_TOTAL,
    MESSAGEBOX_SUBSCRIPTIONS_CREATED_TOTAL,
    MESSAGEBOX_SWEPT_TOTAL,
    SWEEP_DURATION_SECONDS,
)
from eai_broker.models import ColumnSchema, MessagePayload, ProducerIdentity
from eai_broker.orm_models import AdapterInstance, MessageBoxMessage, MessageSubscription, utcnow
from eai_broker.tracing import get_tracer, inject_trace_context
from eai_broker.type_inference import ColumnTypeInfo


logger = logging.getLogger(__name__)


def _log_dev_error(operation: str, exc: Exception) -> None:
    """Log storage errors verbosely in non-production environments."""
    if ENVIRONMENT != "production":
        logger.exception("messagebox storage error during %s", operation, exc_info=exc)


def _column_schema(schema: Mapping[str, Any] | None) -> dict[str, ColumnSchema]:
    columns: dict[str, ColumnSchema] = {}
    for name, info in (schema or {}).items():
        if isinstance(info, ColumnTypeInfo):
            columns[name] = ColumnSchema(**info.to_dict())
        elif isinstance(info, ColumnSchema):
            columns[name] = info
        else:
            columns[name] = ColumnSchema.model_validate(info)
    return columns


def _blocking_subscription():
    """Correlated EXISTS for a subscription that is not yet Processed."""
    return (
        select(MessageSubscription.id)
        .where(
            MessageSubscription.message_id == MessageBoxMessage.message_id,
            MessageSubscription.status != STATUS_PROCESSED,
        )
        .correlate(MessageBoxMessage)
        .exists()
    )


class MessageBox:
    """Publish, read and garbage-collect MessageBox messages."""

    def __init__(self, registry: InterfaceRegistry | None = None, settings: Settings | None = None):
        self.registry = registry or InterfaceRegistry()
        self.settings = settings or Settings()

    async def publish(
        self,
        interface_name: str,
        producer: ProducerIdentity,
        headers: Sequence[str],
        schema: Mapping[str, Any] | None,
        record: Mapping[str, Any],
        *,
        dedup: bool = True,
    ) -> uuid.UUID:
        """Publish one record and return its message id.

        Raises:
            pydantic.ValidationError: malformed producer or payload.
            AdapterInstanceDisabledError: the producing instance is registered
                but disabled; nothing is written.
            ProductionError: the message could not be written; an ``Error``
                row is kept for inspection when possible.
        """
        payload = MessagePayload(headers=list(headers), schema=_column_schema(schema), record=dict(record)).to_document()
        message_hash = compute_message_hash(interface_name, producer.instance_guid, payload)
        log_extra = {"interface": interface_name, "instance_guid": producer.instance_guid}

        with get_tracer().start_as_current_span("messagebox.publish") as span:
            span.set_attribute("eai.interface", interface_name)
            if dedup:
                existing = await self._find_duplicate(interface_name, producer, message_hash)
                if existing is not None:
                    MESSAGEBOX_DEDUPLICATED_TOTAL.inc()
                    MESSAGEBOX_PUBLISHED_TOTAL.labels(interface=interface_name, result="deduplicated").inc()
                    logger.info("duplicate publish on %s; returning %s", interface_name, existing, extra=log_extra)
                    return existing

            message_id = uuid.uuid4()
            trace_context = inject_trace_context() or None
            try:
                async with get_session() as session:
                    async with session.begin():
                        if producer.instance_guid is not None:
                            source = await session.get(AdapterInstance, producer.instance_guid)
                            if source is not None and not source.is_enabled:
                                raise AdapterInstanceDisabledError(producer.instance_guid)
                        destinations = await self.registry.enabled_destinations(interface_name, session=session)
                        session.add(
                            MessageBoxMessage(
                                message_id=message_id,
                                interface_name=interface_name,
                                producing_adapter_name=producer.adapter_name,
                                producing_adapter_type=producer.adapter_type,
                                producing_instance_guid=producer.instance_guid,
                                payload=payload,
                                message_hash=message_hash,
                                trace_context=trace_context,
                                status=STATUS_PENDING,
                            )
                        )
                        await session.flush()
                        for dest in destinations:
                            session.add(
                                MessageSubscription(
                                    message_id=message_id,
                                    interface_name=interface_name,
                                    subscriber_adapter_name=dest.adapter_name,
                                    subscriber_instance_guid=dest.adapter_instance_guid,
                                    status=STATUS_PENDING,
                                )
                            )
            except AdapterInstanceDisabledError:
                MESSAGEBOX_PUBLISHED_TOTAL.labels(interface=interface_name, result="refused").inc()
                logger.warning("refused publish from disabled instance on %s", interface_name, extra=log_extra)
                raise
            except Exception as exc:  # noqa: BLE001
                MESSAGEBOX_PUBLISHED_TOTAL.labels(interface=interface_name, result="failed").inc()
                await self._record_production_error(interface_name, producer, payload, message_hash, str(exc))
                raise ProductionError(interface_name, str(exc)) from exc

            try:
                await self._mark_produced(message_id)
            except Exception as exc:  # noqa: BLE001
                MESSAGEBOX_PUBLISHED_TOTAL.labels(interface=interface_name, result="failed").inc()
                _log_dev_error("mark message processed", exc)
                await self._mark_unconfirmed(message_id, str(exc))
                raise ProductionError(interface_name, f"message {message_id} stored but not confirmed: {exc}") from exc

            span.set_attribute("eai.subscriptions", len(destinations))
        MESSAGEBOX_PUBLISHED_TOTAL.labels(interface=interface_name, result="published").inc()
        MESSAGEBOX_SUBSCRIPTIONS_CREATED_TOTAL.inc(len(destinations))
        logger.debug(
            "published %s on %s with %d subscription(s)", message_id, interface_name, len(destinations), extra=log_extra
        )
        return message_id

    async def publish_batch(
        self,
        interface_name: str,
        producer: ProducerIdentity,
        headers: Sequence[str],
        schema: Mapping[str, Any] | None,
        records: Sequence[Mapping[str, Any]],
        *,
        dedup: bool = True,
    ) -> list[uuid.UUID]:
        """Debatch: publish one message per record, returning ids in record order."""
        return [
            await self.publish(interface_name, producer, headers, schema, record, dedup=dedup)
            for record in records
        ]

    async def _find_duplicate(
        self, interface_name: str, producer: ProducerIdentity, message_hash: str
    ) -> Optional[uuid.UUID]:
        since = utcnow() - timedelta(hours=self.settings.publish_dedup_window_hours)
        query = select(MessageBoxMessage.message_id).where(
            MessageBoxMessage.message_hash == message_hash,
            MessageBoxMessage.interface_name == interface_name,
            MessageBoxMessage.producing_adapter_name == producer.adapter_name,
            MessageBoxMessage.status == STATUS_PROCESSED,
            MessageBoxMessage.created_at >= since,
        )
        if producer.instance_guid is None:
            query = query.where(MessageBoxMessage.producing_instance_guid.is_(None))
        else:
            query = query.where(MessageBoxMessage.producing_instance_guid == producer.instance_guid)
        async with get_session() as session:
            res = await session.execute(query.limit(1))
            return res.scalar_one_or_none()

    async def _mark_produced(self, message_id: uuid.UUID) -> None:
        async with get_session() as session:
            await session.execute(
                update(MessageBoxMessage)
                .where(MessageBoxMessage.message_id == message_id, MessageBoxMessage.status == STATUS_PENDING)
                .values(status=STATUS_PROCESSED, processed_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def _mark_unconfirmed(self, message_id: uuid.UUID, error: str) -> None:
        """Best-effort Pending -> Error for a stored message whose confirmation failed.

        Its subscriptions stay Pending but are never handed out, since only
        Processed messages are distributed.
        """
        try:
            async with get_session() as session:
                await session.execute(
                    update(MessageBoxMessage)
                    .where(MessageBoxMessage.message_id == message_id, MessageBoxMessage.status == STATUS_PENDING)
                    .values(status=STATUS_ERROR, error_message=f"not confirmed: {error}"[:4000])
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except Exception as exc:  # noqa: BLE001
            _log_dev_error("mark message error", exc)

    async def _record_production_error(
        self,
        interface_name: str,
        producer: ProducerIdentity,
        payload: dict[str, Any],
        message_hash: str,
        error: str,
    ) -> None:
        """Best-effort Error row (no subscriptions) for operator inspection."""
        try:
            async with get_session() as session:
                session.add(
                    MessageBoxMessage(
                        interface_name=interface_name,
                        producing_adapter_name=producer.adapter_name,
                        producing_adapter_type=producer.adapter_type,
                        producing_instance_guid=producer.instance_guid,
                        payload=payload,
                        message_hash=message_hash,
                        status=STATUS_ERROR,
                        error_message=error[:4000],
                    )
                )
                await session.commit()
        except Exception as exc:  # noqa: BLE001
            _log_dev_error("insert production error row", exc)

    async def get_message(self, message_id: uuid.UUID) -> Optional[MessageBoxMessage]:
        """Return the message, or None when it does not exist (or was swept)."""
        async with get_session() as session:
            return await session.get(MessageBoxMessage, message_id)

    @staticmethod
    def extract_payload(message: MessageBoxMessage) -> MessagePayload:
        return MessagePayload.model_validate(message.payload)

    async def list_messages(
        self, interface_name: str, status: Optional[str] = None, limit: int = 100
    ) -> list[MessageBoxMessage]:
        async with get_session() as session:
            query = select(MessageBoxMessage).where(MessageBoxMessage.interface_name == interface_name)
            if status:
                query = query.where(MessageBoxMessage.status == status)
            res = await session.execute(query.order_by(MessageBoxMessage.created_at).limit(limit))
            return list(res.scalars().all())

    async def sweep(self, limit: Optional[int] = None) -> int:
        """Delete fully delivered messages and their subscription rows.

        Eligible: production status ``Processed`` and no subscription that is
        not ``Processed``. Eligibility is checked again inside the DELETE so a
        row that changed since the candidate read is left alone. Returns the
        number of messages deleted.
        """
        batch = self.settings.sweep_batch_size if limit is None else limit
        started = time.perf_counter()
        with get_tracer().start_as_current_span("messagebox.sweep"):
            async with get_session() as session:
                async with session.begin():
                    res = await session.execute(
                        select(MessageBoxMessage.message_id)
                        .where(MessageBoxMessage.status == STATUS_PROCESSED, ~_blocking_subscription())
                        .order_by(MessageBoxMessage.created_at)
                        .limit(batch)
                    )
                    candidates = list(res.scalars().all())
                    if not candidates:
                        deleted = 0
                    else:
                        res = await session.execute(
                            delete(MessageBoxMessage)
                            .where(
                                MessageBoxMessage.message_id.in_(candidates),
                                MessageBoxMessage.status == STATUS_PROCESSED,
                                ~_blocking_subscription(),
                            )
                            .execution_options(synchronize_session=False)
                        )
                        deleted = res.rowcount or 0
                        orphan_check = (
                            select(MessageBoxMessage.message_id)
                            .where(MessageBoxMessage.message_id == MessageSubscription.message_id)
                            .correlate(MessageSubscription)
                            .exists()
                        )
                        await session.execute(
                            delete(MessageSubscription)
                            .where(MessageSubscription.message_id.in_(candidates), ~orphan_check)
                            .execution_options(synchronize_session=False)
                        )
        SWEEP_DURATION_SECONDS.observe(time.perf_counter() - started)
        if deleted:
            MESSAGEBOX_SWEPT_TOTAL.inc(deleted)
            logger.info("sweep deleted %d message(s)", deleted)
        return deleted
