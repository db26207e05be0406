from datetime import datetime
from decimal import Decimal

import pytest

from eai_broker.errors import RecordValidationError
from eai_broker.normalization import RecordNormalizer
from eai_broker.type_inference import TypeInferenceEngine
from eai_broker.type_validator import SqlDataType


SCHEMA = {"id": SqlDataType.INT, "price": SqlDataType.DECIMAL, "when": SqlDataType.DATETIME2}


def test_normalize_converts_values():
    record = RecordNormalizer(SCHEMA).normalize({"id": "7", "price": "1,000.5", "when": "2024-05-01"})
    assert record.values == {"id": 7, "price": Decimal("1000.5"), "when": datetime(2024, 5, 1)}
    assert record.nulled_fields == {}


def test_reject_record_lists_every_bad_field():
    with pytest.raises(RecordValidationError) as exc:
        RecordNormalizer(SCHEMA).normalize({"id": "x", "price": "1e3", "when": "2024-05-01"}, row_number=4)
    assert set(exc.value.field_errors) == {"id", "price"}
    assert exc.value.row_number == 4
    assert "row 4" in str(exc.value)


def test_null_field_policy_keeps_record():
    record = RecordNormalizer(SCHEMA, policy="null_field").normalize({"id": "x", "price": "2", "when": ""})
    assert record.values == {"id": None, "price": Decimal("2"), "when": None}
    assert list(record.nulled_fields) == ["id"]


def test_unknown_columns_pass_through_as_text():
    record = RecordNormalizer(SCHEMA).normalize({"id": "1", "comment": " hi "})
    assert record.values["comment"] == " hi "


def test_accepts_inferred_schema():
    schema = TypeInferenceEngine().infer_schema(["n"], [["1"], ["2"]])
    assert RecordNormalizer(schema).normalize({"n": "3"}).values == {"n": 3}


def test_unknown_policy_rejected():
    with pytest.raises(ValueError):
        RecordNormalizer(SCHEMA, policy="drop")  # type: ignore[arg-type]
