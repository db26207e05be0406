import uuid

import pytest

from eai_broker.constants import COMPUTE_UNIT_PREFIX
from eai_broker.errors import InterfaceConfigurationError
from eai_broker.interfaces import InterfaceRegistry


@pytest.mark.asyncio
async def test_create_interface_twice_fails(database):
    registry = InterfaceRegistry()
    await registry.create_interface("orders", description="order feed")
    with pytest.raises(InterfaceConfigurationError):
        await registry.create_interface("orders")
    assert [i.interface_name for i in await registry.list_interfaces()] == ["orders"]


@pytest.mark.asyncio
async def test_add_instance_requires_existing_interface(database):
    with pytest.raises(InterfaceConfigurationError):
        await InterfaceRegistry().add_instance("missing", "in", "CSV", "Source")


@pytest.mark.asyncio
async def test_single_source_per_interface(wiring):
    with pytest.raises(InterfaceConfigurationError):
        await InterfaceRegistry().add_instance(wiring.interface_name, "second-in", "CSV", "Source")


@pytest.mark.asyncio
async def test_enabled_destination_needs_enabled_source(database):
    registry = InterfaceRegistry()
    await registry.create_interface("invoices")
    with pytest.raises(InterfaceConfigurationError):
        await registry.add_instance("invoices", "out", "CSV", "Destination")

    dest = await registry.add_instance("invoices", "out", "CSV", "Destination", is_enabled=False)
    with pytest.raises(InterfaceConfigurationError):
        await registry.set_instance_enabled(dest.adapter_instance_guid, True)

    await registry.add_instance("invoices", "in", "CSV", "Source")
    enabled = await registry.set_instance_enabled(dest.adapter_instance_guid, True)
    assert enabled.is_enabled


@pytest.mark.asyncio
async def test_source_cannot_be_disabled_under_enabled_destinations(wiring):
    registry = InterfaceRegistry()
    with pytest.raises(InterfaceConfigurationError):
        await registry.set_instance_enabled(wiring.source.adapter_instance_guid, False)

    for dest in wiring.destinations:
        await registry.set_instance_enabled(dest.adapter_instance_guid, False)
    source = await registry.set_instance_enabled(wiring.source.adapter_instance_guid, False)
    assert not source.is_enabled
    assert await registry.enabled_source(wiring.interface_name) is None


@pytest.mark.asyncio
async def test_enabled_destinations_excludes_disabled(wiring):
    registry = InterfaceRegistry()
    await registry.set_instance_enabled(wiring.destinations[0].adapter_instance_guid, False)
    enabled = await registry.enabled_destinations(wiring.interface_name)
    assert [d.adapter_instance_guid for d in enabled] == [wiring.destinations[1].adapter_instance_guid]


@pytest.mark.asyncio
async def test_instances_get_compute_unit_ids(wiring):
    instance = await InterfaceRegistry().get_instance(wiring.source.adapter_instance_guid)
    assert instance.compute_unit_id.startswith(COMPUTE_UNIT_PREFIX)
    assert instance.compute_unit_id == wiring.source.compute_unit_id


@pytest.mark.asyncio
async def test_list_instances_by_type(wiring):
    registry = InterfaceRegistry()
    assert len(await registry.list_instances(wiring.interface_name)) == 3
    sources = await registry.list_instances(wiring.interface_name, "Source")
    assert [s.adapter_instance_guid for s in sources] == [wiring.source.adapter_instance_guid]


@pytest.mark.asyncio
async def test_record_instance_status(wiring):
    registry = InterfaceRegistry()
    assert await registry.record_instance_status(wiring.source.adapter_instance_guid, "Running", None)
    assert (await registry.get_instance(wiring.source.adapter_instance_guid)).status == "Running"
    assert not await registry.record_instance_status(uuid.uuid4(), "Running")


@pytest.mark.asyncio
async def test_set_interface_enabled_and_delete(wiring):
    registry = InterfaceRegistry()
    assert await registry.set_interface_enabled(wiring.interface_name, False)
    assert not (await registry.get_interface(wiring.interface_name)).is_enabled
    assert not await registry.set_interface_enabled("missing", False)

    removed = await registry.delete_interface(wiring.interface_name)
    assert len(removed) == 3
    assert await registry.get_interface(wiring.interface_name) is None
    assert await registry.get_instance(wiring.source.adapter_instance_guid) is None
