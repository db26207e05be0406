import asyncio
import json

import pytest

from eai_broker.constants import STATUS_ERROR, STATUS_PENDING, STATUS_PROCESSED
from eai_broker.destination import DestinationWorker
from eai_broker.interfaces import InterfaceRegistry
from eai_broker.message_box import MessageBox
from eai_broker.subscriptions import SubscriptionTracker


async def _publish_many(wiring, count):
    box = MessageBox()
    return [await box.publish(wiring.interface_name, wiring.producer, ["id"], None, {"id": i}) for i in range(count)]


@pytest.mark.asyncio
async def test_run_once_processes_and_acknowledges(wiring):
    ids = await _publish_many(wiring, 3)
    seen = []

    async def handler(message, payload):
        seen.append(payload["record"]["id"])
        return {"rows": 1}

    guid = wiring.destinations[0].adapter_instance_guid
    worker = DestinationWorker(guid, handler, concurrency=1, batch_size=10)
    assert await worker.run_once() == 3
    assert sorted(seen) == [0, 1, 2]
    assert worker.processed == 3

    tracker = SubscriptionTracker()
    for message_id in ids:
        (sub,) = [s for s in await tracker.subscriptions_for(message_id) if s.subscriber_instance_guid == guid]
        assert sub.status == STATUS_PROCESSED
        details = json.loads(sub.processing_details)
        assert details["result"] == {"rows": 1}
        assert "duration_ms" in details
    assert await worker.run_once() == 0


@pytest.mark.asyncio
async def test_handler_failure_marks_error_with_type(wiring):
    (message_id,) = await _publish_many(wiring, 1)

    async def handler(message, payload):
        raise ConnectionError("target offline")

    guid = wiring.destinations[1].adapter_instance_guid
    worker = DestinationWorker(guid, handler, concurrency=1)
    assert await worker.run_once() == 1
    assert worker.failed == 1

    (err,) = await SubscriptionTracker().error_subscriptions(wiring.interface_name)
    assert err.subscriber_instance_guid == guid
    assert err.message_id == message_id
    assert err.error_message == "ConnectionError: target offline"
    assert err.status == STATUS_ERROR


@pytest.mark.asyncio
async def test_batch_size_limits_one_poll(wiring):
    await _publish_many(wiring, 5)

    async def handler(message, payload):
        return None

    worker = DestinationWorker(wiring.destinations[0].adapter_instance_guid, handler, concurrency=1, batch_size=2)
    assert await worker.run_once() == 2
    assert await worker.run_once() == 2
    assert await worker.run_once() == 1


@pytest.mark.asyncio
async def test_stopped_worker_does_not_claim(wiring):
    await _publish_many(wiring, 2)

    async def handler(message, payload):
        return None

    worker = DestinationWorker(wiring.destinations[0].adapter_instance_guid, handler, concurrency=1)
    worker.stop()
    assert worker.stopping
    assert await worker.run_once() == 0
    assert len(await SubscriptionTracker().pending_for_subscriber(wiring.destinations[0].adapter_instance_guid)) == 2


@pytest.mark.asyncio
async def test_run_drains_then_stops(wiring):
    await _publish_many(wiring, 3)
    guid = wiring.destinations[0].adapter_instance_guid

    async def handler(message, payload):
        return None

    worker = DestinationWorker(guid, handler, concurrency=1, poll_delays_ms=[10])
    task = asyncio.create_task(worker.run())
    for _ in range(200):
        if worker.processed == 3:
            break
        await asyncio.sleep(0.01)
    worker.stop()
    await asyncio.wait_for(task, timeout=5)

    assert worker.processed == 3
    assert await SubscriptionTracker().pending_for_subscriber(guid) == []


@pytest.mark.asyncio
async def test_disabled_instance_claims_nothing_until_re_enabled(wiring):
    (message_id,) = await _publish_many(wiring, 1)
    registry = InterfaceRegistry()
    guid = wiring.destinations[0].adapter_instance_guid
    seen = []

    async def handler(message, payload):
        seen.append(message.message_id)

    worker = DestinationWorker(guid, handler, concurrency=1)
    await registry.set_instance_enabled(guid, False)

    assert await worker.run_once() == 0
    assert seen == []
    (sub,) = [s for s in await SubscriptionTracker().subscriptions_for(message_id) if s.subscriber_instance_guid == guid]
    assert sub.status == STATUS_PENDING

    await registry.set_instance_enabled(guid, True)
    assert await worker.run_once() == 1
    assert seen == [message_id]


@pytest.mark.asyncio
async def test_disable_mid_batch_lets_claimed_messages_finish(wiring):
    first, second = await _publish_many(wiring, 2)
    guid = wiring.destinations[0].adapter_instance_guid
    tracker = SubscriptionTracker()
    seen = []

    async def handler(message, payload):
        await InterfaceRegistry().set_instance_enabled(guid, False)
        seen.append(message.message_id)

    worker = DestinationWorker(guid, handler, concurrency=1, batch_size=1)
    assert await worker.run_once() == 1
    assert await worker.run_once() == 0
    assert seen == [first]

    statuses = {}
    for message_id in (first, second):
        (sub,) = [s for s in await tracker.subscriptions_for(message_id) if s.subscriber_instance_guid == guid]
        statuses[message_id] = sub.status
    assert statuses == {first: STATUS_PROCESSED, second: STATUS_PENDING}


@pytest.mark.asyncio
async def test_deleted_instance_claims_nothing(wiring):
    await _publish_many(wiring, 1)

    async def handler(message, payload):
        raise AssertionError("handler must not run")

    worker = DestinationWorker(wiring.destinations[1].adapter_instance_guid, handler, concurrency=1)
    await InterfaceRegistry().delete_interface(wiring.interface_name)
    assert await worker.run_once() == 0
