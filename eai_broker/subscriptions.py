"""Subscription tracking for guaranteed multi-subscriber delivery.

Every published message gets one ``MessageSubscription`` row per destination
instance that was enabled at publish time. A destination worker reads its
``Pending`` rows, processes the payload and acknowledges with
``mark_processed`` or ``mark_error``.

Acknowledgements are conditional updates guarded by ``status = 'Pending'``:
a duplicate, late or concurrent acknowledgement can never overwrite a row
that already reached ``Processed`` or ``Error``; it returns False instead.
Operators move ``Error`` rows back to ``Pending`` with ``retry_subscription``
or ``retry_errors``.

Example:
    >>> tracker = SubscriptionTracker()
    >>> for message in await tracker.pending_for_subscriber(guid, limit=10):
    ...     await tracker.mark_processed(message.message_id, guid, {"rows": 1})
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Optional

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from eai_broker.constants import STATUS_ERROR, STATUS_PENDING, STATUS_PROCESSED
from eai_broker.db import get_session
from eai_broker.errors import MessageNotFoundError, SubscriptionNotFoundError
from eai_broker.metrics import SUBSCRIPTION_ACK_TOTAL
from eai_broker.orm_models import MessageBoxMessage, MessageSubscription, utcnow


logger = logging.getLogger(__name__)


def _details_json(details: Optional[dict[str, Any]]) -> Optional[str]:
    if details is None:
        return None
    return json.dumps(details, sort_keys=True, default=str)


class SubscriptionTracker:
    """Consume-side protocol and queries over ``message_subscriptions``."""

    async def pending_for_subscriber(self, instance_guid: uuid.UUID, limit: int = 50) -> list[MessageBoxMessage]:
        """Return distributed messages still Pending for a destination instance, oldest first."""
        async with get_session() as session:
            res = await session.execute(
                select(MessageBoxMessage)
                .join(
                    MessageSubscription,
                    and_(
                        MessageSubscription.message_id == MessageBoxMessage.message_id,
                        MessageSubscription.subscriber_instance_guid == instance_guid,
                    ),
                )
                .where(
                    MessageSubscription.status == STATUS_PENDING,
                    MessageBoxMessage.status == STATUS_PROCESSED,
                )
                .order_by(MessageBoxMessage.created_at, MessageSubscription.id)
                .limit(limit)
            )
            return list(res.scalars().all())

    async def pending_for_interface(
        self, interface_name: str, subscriber_adapter_name: Optional[str] = None, limit: int = 100
    ) -> list[MessageSubscription]:
        """Return Pending subscription rows of an interface, optionally for one adapter kind."""
        async with get_session() as session:
            query = select(MessageSubscription).where(
                MessageSubscription.interface_name == interface_name,
                MessageSubscription.status == STATUS_PENDING,
            )
            if subscriber_adapter_name:
                query = query.where(MessageSubscription.subscriber_adapter_name == subscriber_adapter_name)
            res = await session.execute(query.order_by(MessageSubscription.created_at, MessageSubscription.id).limit(limit))
            return list(res.scalars().all())

    async def _acknowledge(
        self,
        message_id: uuid.UUID,
        instance_guid: uuid.UUID,
        status: str,
        error_message: Optional[str],
        details: Optional[dict[str, Any]],
    ) -> bool:
        async with get_session() as session:
            res = await session.execute(
                update(MessageSubscription)
                .where(
                    MessageSubscription.message_id == message_id,
                    MessageSubscription.subscriber_instance_guid == instance_guid,
                    MessageSubscription.status == STATUS_PENDING,
                )
                .values(
                    status=status,
                    processed_at=utcnow(),
                    error_message=error_message,
                    processing_details=_details_json(details),
                )
            )
            await session.commit()
            if res.rowcount > 0:
                SUBSCRIPTION_ACK_TOTAL.labels(status=status, result="applied").inc()
                return True
            await self._require_subscription(session, message_id, instance_guid)
        SUBSCRIPTION_ACK_TOTAL.labels(status=status, result="ignored").inc()
        logger.info(
            "ignored %s ack for message %s: subscription already terminal",
            status,
            message_id,
            extra={"instance_guid": instance_guid},
        )
        return False

    async def _require_subscription(
        self, session: AsyncSession, message_id: uuid.UUID, instance_guid: uuid.UUID
    ) -> MessageSubscription:
        res = await session.execute(
            select(MessageSubscription).where(
                MessageSubscription.message_id == message_id,
                MessageSubscription.subscriber_instance_guid == instance_guid,
            )
        )
        row = res.scalar_one_or_none()
        if row is None:
            raise SubscriptionNotFoundError(message_id, instance_guid)
        return row

    async def mark_processed(
        self, message_id: uuid.UUID, instance_guid: uuid.UUID, details: Optional[dict[str, Any]] = None
    ) -> bool:
        """Move a Pending subscription to Processed.

        Returns False (without writing) when the row is already terminal.

        Raises:
            SubscriptionNotFoundError: no row for (message, subscriber).
        """
        return await self._acknowledge(message_id, instance_guid, STATUS_PROCESSED, None, details)

    async def mark_error(
        self,
        message_id: uuid.UUID,
        instance_guid: uuid.UUID,
        error_message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Move a Pending subscription to Error; same contract as ``mark_processed``."""
        return await self._acknowledge(message_id, instance_guid, STATUS_ERROR, error_message, details)

    async def retry_subscription(self, message_id: uuid.UUID, instance_guid: uuid.UUID) -> bool:
        """Flip an Error subscription back to Pending and bump its retry count.

        Returns False when the row is not in Error.
        """
        async with get_session() as session:
            res = await session.execute(
                update(MessageSubscription)
                .where(
                    MessageSubscription.message_id == message_id,
                    MessageSubscription.subscriber_instance_guid == instance_guid,
                    MessageSubscription.status == STATUS_ERROR,
                )
                .values(
                    status=STATUS_PENDING,
                    retry_count=MessageSubscription.retry_count + 1,
                    processed_at=None,
                )
            )
            await session.commit()
            if res.rowcount > 0:
                return True
            await self._require_subscription(session, message_id, instance_guid)
            return False

    async def error_subscriptions(
        self, interface_name: str, instance_guid: Optional[uuid.UUID] = None, limit: Optional[int] = None
    ) -> list[MessageSubscription]:
        async with get_session() as session:
            query = select(MessageSubscription).where(
                MessageSubscription.interface_name == interface_name,
                MessageSubscription.status == STATUS_ERROR,
            )
            if instance_guid is not None:
                query = query.where(MessageSubscription.subscriber_instance_guid == instance_guid)
            query = query.order_by(MessageSubscription.created_at, MessageSubscription.id)
            if limit is not None:
                query = query.limit(limit)
            res = await session.execute(query)
            return list(res.scalars().all())

    async def retry_errors(self, interface_name: str, instance_guid: Optional[uuid.UUID] = None) -> int:
        """Retry every Error subscription of an interface; returns the number flipped."""
        async with get_session() as session:
            query = update(MessageSubscription).where(
                MessageSubscription.interface_name == interface_name,
                MessageSubscription.status == STATUS_ERROR,
            )
            if instance_guid is not None:
                query = query.where(MessageSubscription.subscriber_instance_guid == instance_guid)
            res = await session.execute(
                query.values(
                    status=STATUS_PENDING,
                    retry_count=MessageSubscription.retry_count + 1,
                    processed_at=None,
                )
            )
            await session.commit()
        count = res.rowcount or 0
        logger.info("retried %d error subscription(s) on %s", count, interface_name, extra={"interface": interface_name})
        return count

    async def subscriptions_for(self, message_id: uuid.UUID) -> list[MessageSubscription]:
        async with get_session() as session:
            res = await session.execute(
                select(MessageSubscription)
                .where(MessageSubscription.message_id == message_id)
                .order_by(MessageSubscription.id)
            )
            return list(res.scalars().all())

    async def pending_subscribers(self, message_id: uuid.UUID) -> list[uuid.UUID]:
        async with get_session() as session:
            res = await session.execute(
                select(MessageSubscription.subscriber_instance_guid)
                .where(
                    MessageSubscription.message_id == message_id,
                    MessageSubscription.status == STATUS_PENDING,
                )
                .order_by(MessageSubscription.id)
            )
            return list(res.scalars().all())

    async def all_processed(self, message_id: uuid.UUID) -> bool:
        """True when every subscription of the message is Processed (vacuously for none).

        Raises:
            MessageNotFoundError: the message does not exist (or was swept).
        """
        async with get_session() as session:
            if await session.get(MessageBoxMessage, message_id) is None:
                raise MessageNotFoundError(message_id)
            res = await session.execute(
                select(MessageSubscription.id)
                .where(
                    MessageSubscription.message_id == message_id,
                    MessageSubscription.status != STATUS_PROCESSED,
                )
                .limit(1)
            )
            return res.first() is None
