import pytest

from eai_broker.ingestion import ingest_csv, ingest_rows, read_delimited
from eai_broker.interfaces import InterfaceRegistry
from eai_broker.message_box import MessageBox
from eai_broker.subscriptions import SubscriptionTracker
from eai_broker.type_validator import SqlDataType


def test_read_delimited_skips_blank_lines(tmp_path):
    path = tmp_path / "orders.txt"
    path.write_text("\ufeffid║ name \n1║Ada\n\n2║Grace\n", encoding="utf-8")
    headers, rows = read_delimited(str(path), "║")
    assert headers == ["id", "name"]
    assert rows == [["1", "Ada"], ["2", "Grace"]]


def test_read_delimited_empty_file(tmp_path):
    path = tmp_path / "empty.csv"
    path.write_text("", encoding="utf-8")
    assert read_delimited(str(path)) == ([], [])


@pytest.mark.asyncio
async def test_ingest_csv_publishes_typed_records(wiring, tmp_path):
    path = tmp_path / "orders.csv"
    path.write_text("id,amount,when\n1,2.50,2024-01-01\n2,3,2024-01-02\n", encoding="utf-8")
    box = MessageBox()

    report = await ingest_csv(str(path), wiring.interface_name, wiring.producer, box=box)

    assert report.rows_read == 2
    assert report.published == 2
    assert report.rejected == 0
    assert report.schema["id"].data_type == SqlDataType.INT
    assert report.schema["amount"].data_type == SqlDataType.DECIMAL

    payload = box.extract_payload(await box.get_message(report.message_ids[0]))
    assert payload.record == {"id": 1, "amount": "2.50", "when": "2024-01-01T00:00:00"}
    assert payload.columns["amount"].sql_definition == "DECIMAL(18,2)"
    guid = wiring.destinations[0].adapter_instance_guid
    assert len(await SubscriptionTracker().pending_for_subscriber(guid)) == 2


@pytest.mark.asyncio
async def test_rows_outside_the_sample_can_be_rejected(wiring):
    box = MessageBox()
    rows = [["1"], ["2"], ["three"]]

    report = await ingest_rows(box, wiring.interface_name, wiring.producer, ["qty"], rows, sample_size=2)

    assert report.published == 2
    assert report.rejected == 1
    assert "row 3" in report.errors[0]


@pytest.mark.asyncio
async def test_null_field_policy_publishes_every_row(wiring):
    box = MessageBox()
    report = await ingest_rows(
        box, wiring.interface_name, wiring.producer, ["qty"], [["1"], ["x"]], policy="null_field", sample_size=1
    )
    assert report.published == 2
    assert report.nulled_fields == 1
    payload = box.extract_payload(await box.get_message(report.message_ids[1]))
    assert payload.record == {"qty": None}


@pytest.mark.asyncio
async def test_headers_only_file_publishes_nothing(wiring, tmp_path):
    path = tmp_path / "header.csv"
    path.write_text("id,name\n", encoding="utf-8")
    report = await ingest_csv(str(path), wiring.interface_name, wiring.producer)
    assert report.published == 0
    assert report.rows_read == 0


@pytest.mark.asyncio
async def test_disabling_the_source_mid_file_stops_ingestion(wiring):
    box = MessageBox()
    registry = InterfaceRegistry()
    publish = box.publish

    async def publish_then_disable(*args, **kwargs):
        message_id = await publish(*args, **kwargs)
        for dest in wiring.destinations:
            await registry.set_instance_enabled(dest.adapter_instance_guid, False)
        await registry.set_instance_enabled(wiring.source.adapter_instance_guid, False)
        return message_id

    box.publish = publish_then_disable
    report = await ingest_rows(box, wiring.interface_name, wiring.producer, ["qty"], [["1"], ["2"], ["3"]])

    assert report.cancelled
    assert report.published == 1
    assert "disabled" in report.errors[0]
    assert len(await box.list_messages(wiring.interface_name)) == 1
