import pytest
from pydantic import ValidationError

from eai_broker.adapter_config import AdapterConfigStore


@pytest.mark.asyncio
async def test_set_and_get(database):
    store = AdapterConfigStore()
    await store.set_setting("CSV", "Source", "ReceiveFolder", "/in")
    assert await store.get_setting("CSV", "Source", "ReceiveFolder") == "/in"
    assert await store.get_setting("CSV", "Destination", "ReceiveFolder") is None


@pytest.mark.asyncio
async def test_set_is_an_upsert(database):
    store = AdapterConfigStore()
    await store.set_setting("CSV", "Source", "FileMask", "*.txt", description="input files")
    await store.set_setting("CSV", "Source", "FileMask", "*.csv")
    assert await store.get_all_settings("CSV", "Source") == {"FileMask": "*.csv"}


@pytest.mark.asyncio
async def test_deactivate_hides_and_set_reactivates(database):
    store = AdapterConfigStore()
    await store.set_setting("SqlServer", "Destination", "TableName", "dbo.Orders")
    assert await store.deactivate_setting("SqlServer", "Destination", "TableName")
    assert await store.get_setting("SqlServer", "Destination", "TableName") is None
    assert not await store.deactivate_setting("SqlServer", "Destination", "TableName")

    await store.set_setting("SqlServer", "Destination", "TableName", "dbo.Orders2")
    assert await store.get_setting("SqlServer", "Destination", "TableName") == "dbo.Orders2"


@pytest.mark.asyncio
async def test_get_all_settings_only_active(database):
    store = AdapterConfigStore()
    await store.set_setting("CSV", "Destination", "ReceiveFolder", "/out")
    await store.set_setting("CSV", "Destination", "FieldSeparator", ";")
    await store.set_setting("CSV", "Destination", "BatchSize", "10")
    await store.deactivate_setting("CSV", "Destination", "BatchSize")
    assert await store.get_all_settings("CSV", "Destination") == {"FieldSeparator": ";", "ReceiveFolder": "/out"}


@pytest.mark.asyncio
async def test_rejects_bad_records(database):
    store = AdapterConfigStore()
    with pytest.raises(ValidationError):
        await store.set_setting("CSV", "Sideways", "ReceiveFolder", "/in")
    with pytest.raises(ValidationError):
        await store.set_setting("CSV", "Source", "", "x")
