import csv
from datetime import datetime

import pytest

from eai_broker.adapter_kinds import (
    CsvFileWriter,
    expand_file_mask,
    get_adapter_kind,
    is_secret_setting,
    matches_file_mask,
)
from eai_broker.errors import AdapterConfigurationError


def test_csv_kind_requires_receive_folder():
    kind = get_adapter_kind("csv")
    assert kind.validate_instance_config("Source", {"ReceiveFolder": "/in"}) == []
    assert kind.validate_instance_config("Source", {}) == ["ReceiveFolder is required"]


def test_csv_kind_checks_separator_and_batch_size():
    kind = get_adapter_kind("CSV")
    problems = kind.validate_instance_config(
        "Destination", {"ReceiveFolder": "/out", "FieldSeparator": ";;", "BatchSize": "zero"}
    )
    assert any("FieldSeparator" in p for p in problems)
    assert any("BatchSize" in p for p in problems)


def test_sql_server_kind_polling_interval_only_for_sources():
    kind = get_adapter_kind("SqlServer")
    base = {"Server": "db", "Database": "d", "User": "u", "Password": "p", "TableName": "t"}
    assert kind.validate_instance_config("Source", {**base, "PollingInterval": "0"})
    assert kind.validate_instance_config("Destination", {**base, "PollingInterval": "0"}) == []


def test_generic_kind_accepts_anything_but_unknown_type():
    kind = get_adapter_kind("Sftp")
    assert kind.name == "Sftp"
    assert kind.validate_instance_config("Source", {"anything": "x"}) == []
    assert kind.validate_instance_config("Sideways", {})


def test_with_defaults_keeps_explicit_values():
    resolved = get_adapter_kind("CSV").with_defaults({"FileMask": "*.csv"})
    assert resolved["FileMask"] == "*.csv"
    assert resolved["FieldSeparator"] == "║"


def test_secret_detection():
    assert is_secret_setting("SqlServer", "Password")
    assert is_secret_setting("Sftp", "ApiToken")
    assert is_secret_setting("Sftp", "Connection_String")
    assert not is_secret_setting("CSV", "ReceiveFolder")


def test_expand_file_mask():
    now = datetime(2024, 1, 2, 3, 4, 5, 6000)
    assert expand_file_mask("out_$datetime.csv", now) == "out_20240102030405.006.csv"
    assert expand_file_mask("*.txt", now) == "20240102030405.006.txt"
    assert expand_file_mask("", now) == "output.txt"
    assert expand_file_mask("fixed.csv", now) == "fixed.csv"


def test_matches_file_mask():
    assert matches_file_mask("Orders.TXT", "*.txt")
    assert not matches_file_mask("orders.csv", "*.txt")
    assert matches_file_mask("anything", "")


def test_csv_writer_from_settings_validates():
    with pytest.raises(AdapterConfigurationError):
        CsvFileWriter.from_settings({})


@pytest.mark.asyncio
async def test_csv_writer_writes_header_once(tmp_path):
    writer = CsvFileWriter.from_settings(
        {"ReceiveFolder": str(tmp_path / "out"), "FileMask": "orders.csv", "FieldSeparator": ";"}
    )
    payload = {"headers": ["id", "name"], "record": {"id": 1, "name": None}}
    result = await writer(None, payload)
    await writer(None, {"headers": ["id", "name"], "record": {"id": 2, "name": "b"}})

    assert result == {"file": str(tmp_path / "out" / "orders.csv"), "columns": 2}
    with open(result["file"], newline="", encoding="utf-8") as fh:
        rows = list(csv.reader(fh, delimiter=";"))
    assert rows == [["id", "name"], ["1", ""], ["2", "b"]]
