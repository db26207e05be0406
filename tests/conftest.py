import uuid

import pytest_asyncio

from eai_broker.constants import ADAPTER_TYPE_DESTINATION, ADAPTER_TYPE_SOURCE
from eai_broker.db import create_all, dispose_engine
from eai_broker.interfaces import InterfaceRegistry
from eai_broker.models import ProducerIdentity


@pytest_asyncio.fixture
async def database(tmp_path, monkeypatch):
    # One SQLite file per test; the shared engine is rebuilt from DATABASE_URL
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'messagebox.db'}")
    await dispose_engine()
    await create_all()
    yield
    await dispose_engine()


class Wiring:
    """An interface with one source and a list of destination instances."""

    def __init__(self, interface_name, source, destinations):
        self.interface_name = interface_name
        self.source = source
        self.destinations = destinations

    @property
    def producer(self) -> ProducerIdentity:
        return ProducerIdentity(
            adapter_name=self.source.adapter_name,
            adapter_type=ADAPTER_TYPE_SOURCE,
            instance_guid=self.source.adapter_instance_guid,
        )


async def wire_interface(interface_name: str = "orders", destinations: int = 2) -> Wiring:
    registry = InterfaceRegistry()
    await registry.create_interface(interface_name)
    source = await registry.add_instance(interface_name, "orders-in", "CSV", ADAPTER_TYPE_SOURCE)
    dests = []
    for i in range(destinations):
        dests.append(
            await registry.add_instance(
                interface_name, f"orders-out-{i}", "SqlServer", ADAPTER_TYPE_DESTINATION, instance_guid=uuid.uuid4()
            )
        )
    return Wiring(interface_name, source, dests)


@pytest_asyncio.fixture
async def wiring(database):
    return await wire_interface()
