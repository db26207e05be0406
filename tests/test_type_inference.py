from eai_broker.type_inference import TypeInferenceEngine
from eai_broker.type_validator import SqlDataType


engine = TypeInferenceEngine()


def test_integer_samples_infer_int():
    assert engine.infer("qty", ["1", "22", "-3", "", " 4 "]) == SqlDataType.INT


def test_free_text_infers_nvarchar():
    assert engine.infer("name", ["1", "two", "3"]) == SqlDataType.NVARCHAR


def test_empty_column_infers_nvarchar():
    assert engine.infer("blank", ["", "  ", None]) == SqlDataType.NVARCHAR
    assert engine.infer("none", []) == SqlDataType.NVARCHAR


def test_mixed_int_and_decimal_infers_decimal():
    assert engine.infer("price", ["1", "2.50", "1,000.75"]) == SqlDataType.DECIMAL


def test_dates_infer_datetime2():
    assert engine.infer("created", ["2024-01-01", "2024-02-15 10:00:00", "03/04/2024"]) == SqlDataType.DATETIME2


def test_zero_one_column_is_int_not_bit():
    assert engine.infer("flag", ["0", "1", "1"]) == SqlDataType.INT


def test_yes_no_infers_bit():
    assert engine.infer("active", ["yes", "No", "Y"]) == SqlDataType.BIT


def test_guids_infer_uniqueidentifier():
    samples = ["3f2504e0-4f89-11d3-9a0c-0305e82c3301", "{6ba7b810-9dad-11d1-80b4-00c04fd430c8}"]
    assert engine.infer("id", samples) == SqlDataType.UNIQUEIDENTIFIER


def test_analyze_empty_column_defaults_to_nvarchar_255():
    info = engine.analyze_column("x", ["", ""])
    assert info.data_type == SqlDataType.NVARCHAR
    assert info.max_length == 255
    assert info.sql_definition == "NVARCHAR(255)"


def test_analyze_nvarchar_buckets():
    assert engine.analyze_column("s", ["a" * 50]).sql_definition == "NVARCHAR(50)"
    assert engine.analyze_column("s", ["a" * 51]).sql_definition == "NVARCHAR(100)"
    assert engine.analyze_column("s", ["a" * 300]).sql_definition == "NVARCHAR(500)"
    long = engine.analyze_column("s", ["a" * 4001])
    assert long.max_length == -1
    assert long.sql_definition == "NVARCHAR(MAX)"


def test_analyze_decimal_precision_and_scale():
    info = engine.analyze_column("amount", ["1.5", "10.125"])
    assert (info.precision, info.scale) == (18, 3)
    assert info.sql_definition == "DECIMAL(18,3)"

    wide = engine.analyze_column("big", ["1" * 30 + "." + "1" * 15])
    assert wide.precision == 38
    assert wide.scale == 15


def test_analyze_int_definition():
    assert engine.analyze_column("n", ["1", "2"]).sql_definition == "INT"


def test_infer_schema_uses_only_the_sample():
    headers = ["id", "note"]
    rows = [["1", "a"], ["2", "b"], ["three", "c"]]
    schema = engine.infer_schema(headers, rows, sample_size=2)
    assert schema["id"].data_type == SqlDataType.INT
    assert schema["note"].data_type == SqlDataType.NVARCHAR


def test_infer_schema_pads_short_rows():
    schema = engine.infer_schema(["a", "b"], [["1"], ["2", "x"]])
    assert schema["a"].data_type == SqlDataType.INT
    assert schema["b"].data_type == SqlDataType.NVARCHAR
