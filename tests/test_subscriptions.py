import json
import uuid

import pytest

from eai_broker.constants import STATUS_ERROR, STATUS_PENDING, STATUS_PROCESSED
from eai_broker.errors import MessageNotFoundError, SubscriptionNotFoundError
from eai_broker.message_box import MessageBox
from eai_broker.subscriptions import SubscriptionTracker


async def _publish(wiring, record_id=1):
    return await MessageBox().publish(wiring.interface_name, wiring.producer, ["id"], None, {"id": record_id})


@pytest.mark.asyncio
async def test_pending_for_subscriber_oldest_first(wiring):
    ids = [await _publish(wiring, i) for i in range(3)]
    tracker = SubscriptionTracker()
    guid = wiring.destinations[0].adapter_instance_guid
    assert [m.message_id for m in await tracker.pending_for_subscriber(guid)] == ids
    assert len(await tracker.pending_for_subscriber(guid, limit=2)) == 2


@pytest.mark.asyncio
async def test_mark_processed_is_per_subscriber(wiring):
    message_id = await _publish(wiring)
    tracker = SubscriptionTracker()
    a, b = (d.adapter_instance_guid for d in wiring.destinations)

    assert await tracker.mark_processed(message_id, a, {"rows": 1})
    assert await tracker.pending_subscribers(message_id) == [b]
    assert not await tracker.all_processed(message_id)
    assert await tracker.pending_for_subscriber(a) == []

    subs = {s.subscriber_instance_guid: s for s in await tracker.subscriptions_for(message_id)}
    assert subs[a].status == STATUS_PROCESSED
    assert subs[a].processed_at is not None
    assert json.loads(subs[a].processing_details) == {"rows": 1}
    assert subs[b].status == STATUS_PENDING


@pytest.mark.asyncio
async def test_terminal_rows_are_not_overwritten(wiring):
    message_id = await _publish(wiring)
    tracker = SubscriptionTracker()
    guid = wiring.destinations[0].adapter_instance_guid

    assert await tracker.mark_processed(message_id, guid)
    assert not await tracker.mark_error(message_id, guid, "late failure")
    assert not await tracker.mark_processed(message_id, guid)

    (sub,) = [s for s in await tracker.subscriptions_for(message_id) if s.subscriber_instance_guid == guid]
    assert sub.status == STATUS_PROCESSED
    assert sub.error_message is None


@pytest.mark.asyncio
async def test_ack_for_unknown_subscription_raises(wiring):
    message_id = await _publish(wiring)
    with pytest.raises(SubscriptionNotFoundError):
        await SubscriptionTracker().mark_processed(message_id, uuid.uuid4())
    with pytest.raises(SubscriptionNotFoundError):
        await SubscriptionTracker().retry_subscription(uuid.uuid4(), wiring.destinations[0].adapter_instance_guid)


@pytest.mark.asyncio
async def test_error_then_retry(wiring):
    message_id = await _publish(wiring)
    tracker = SubscriptionTracker()
    guid = wiring.destinations[1].adapter_instance_guid

    assert await tracker.mark_error(message_id, guid, "ConnectionError: refused", {"duration_ms": 3})
    (err,) = await tracker.error_subscriptions(wiring.interface_name)
    assert err.error_message == "ConnectionError: refused"
    assert await tracker.pending_for_subscriber(guid) == []

    assert await tracker.retry_subscription(message_id, guid)
    assert not await tracker.retry_subscription(message_id, guid)
    (sub,) = [s for s in await tracker.subscriptions_for(message_id) if s.subscriber_instance_guid == guid]
    assert sub.status == STATUS_PENDING
    assert sub.retry_count == 1
    assert sub.processed_at is None
    assert [m.message_id for m in await tracker.pending_for_subscriber(guid)] == [message_id]


@pytest.mark.asyncio
async def test_retry_errors_bulk_and_filtered(wiring):
    tracker = SubscriptionTracker()
    a, b = (d.adapter_instance_guid for d in wiring.destinations)
    ids = [await _publish(wiring, i) for i in range(2)]
    for message_id in ids:
        await tracker.mark_error(message_id, a, "boom")
        await tracker.mark_error(message_id, b, "boom")

    assert await tracker.retry_errors(wiring.interface_name, instance_guid=a) == 2
    assert {s.subscriber_instance_guid for s in await tracker.error_subscriptions(wiring.interface_name)} == {b}
    assert await tracker.retry_errors(wiring.interface_name) == 2
    assert await tracker.error_subscriptions(wiring.interface_name) == []
    assert await tracker.retry_errors(wiring.interface_name) == 0


@pytest.mark.asyncio
async def test_pending_for_interface_filters_adapter(wiring):
    await _publish(wiring)
    tracker = SubscriptionTracker()
    assert len(await tracker.pending_for_interface(wiring.interface_name)) == 2
    assert len(await tracker.pending_for_interface(wiring.interface_name, "SqlServer")) == 2
    assert await tracker.pending_for_interface(wiring.interface_name, "CSV") == []


@pytest.mark.asyncio
async def test_all_processed(wiring):
    message_id = await _publish(wiring)
    tracker = SubscriptionTracker()
    for dest in wiring.destinations:
        await tracker.mark_processed(message_id, dest.adapter_instance_guid)
    assert await tracker.all_processed(message_id)

    with pytest.raises(MessageNotFoundError):
        await tracker.all_processed(uuid.uuid4())


@pytest.mark.asyncio
async def test_error_status_blocks_all_processed(wiring):
    message_id = await _publish(wiring)
    tracker = SubscriptionTracker()
    a, b = (d.adapter_instance_guid for d in wiring.destinations)
    await tracker.mark_processed(message_id, a)
    await tracker.mark_error(message_id, b, "x")
    assert not await tracker.all_processed(message_id)
    assert [s.status for s in await tracker.subscriptions_for(message_id) if s.subscriber_instance_guid == b] == [
        STATUS_ERROR
    ]
