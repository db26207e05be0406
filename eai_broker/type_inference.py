"""Column type inference for untyped tabular input.

``TypeInferenceEngine.infer`` walks the candidate types from strictest to
loosest (``INT < DECIMAL < DATETIME2 < BIT < UNIQUEIDENTIFIER < NVARCHAR``)
and returns the first one under which every non-empty sample validates.
``analyze_column`` adds the SQL sizing a destination table needs, and
``infer_schema`` applies both to the leading rows of a file.

Examples:
    >>> engine = TypeInferenceEngine()
    >>> engine.infer("qty", ["1", " 2", "", "-3"])
    <SqlDataType.INT: 'INT'>
    >>> engine.analyze_column("name", ["Ada", "Grace"]).sql_definition
    'NVARCHAR(50)'
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from eai_broker.type_validator import SqlDataType, TypeValidator, is_blank


logger = logging.getLogger(__name__)

INFERENCE_ORDER: tuple[SqlDataType, ...] = (
    SqlDataType.INT,
    SqlDataType.DECIMAL,
    SqlDataType.DATETIME2,
    SqlDataType.BIT,
    SqlDataType.UNIQUEIDENTIFIER,
    SqlDataType.NVARCHAR,
)

NVARCHAR_BUCKETS = (50, 100, 255, 500, 1000, 4000)
NVARCHAR_MAX = -1
NVARCHAR_DEFAULT_LENGTH = 255

DECIMAL_DEFAULT_PRECISION = 18
DECIMAL_DEFAULT_SCALE = 2
DECIMAL_MAX_PRECISION = 38


@dataclass
class ColumnTypeInfo:
    """Inferred type of one column plus its SQL sizing.

    Attributes
    ----------
    data_type: SqlDataType
    max_length: int | None
        NVARCHAR length bucket; ``-1`` means ``NVARCHAR(MAX)``.
    precision / scale: int | None
        DECIMAL sizing.
    sql_definition: str
        Column definition, e.g. ``DECIMAL(18,2)``.
    """
    data_type: SqlDataType
    max_length: int | None = None
    precision: int | None = None
    scale: int | None = None
    sql_definition: str = ""

    def to_dict(self) -> dict:
        return {
            "data_type": self.data_type.value,
            "sql_definition": self.sql_definition,
            "max_length": self.max_length,
            "precision": self.precision,
            "scale": self.scale,
        }


def nvarchar_length(values: Iterable[str]) -> int:
    longest = max((len(v) for v in values), default=0)
    for bucket in NVARCHAR_BUCKETS:
        if longest <= bucket:
            return bucket
    return NVARCHAR_MAX


def decimal_sizing(values: Iterable[str]) -> tuple[int, int]:
    """Return ``(precision, scale)`` wide enough for every value.

    Precision never drops below 18 and is capped at 38; scale never drops
    below 2 and never exceeds precision.
    """
    precision = DECIMAL_DEFAULT_PRECISION
    scale = DECIMAL_DEFAULT_SCALE
    for value in values:
        digits = value.strip().lstrip("+-").replace(",", "")
        integer_part, _, fraction = digits.partition(".")
        precision = max(precision, len(integer_part) + len(fraction))
        scale = max(scale, len(fraction))
    precision = min(precision, DECIMAL_MAX_PRECISION)
    scale = min(scale, precision)
    return precision, scale


class TypeInferenceEngine:
    """Infer SQL column types from sample values."""

    def __init__(self, validator: TypeValidator | None = None):
        self.validator = validator or TypeValidator()

    def infer(self, column_name: str, samples: Sequence[str | None]) -> SqlDataType:
        values = [s for s in samples if not is_blank(s)]
        if not values:
            return SqlDataType.NVARCHAR
        for candidate in INFERENCE_ORDER:
            if all(self.validator.validate(v, candidate) for v in values):
                logger.debug("column %s inferred as %s from %d samples", column_name, candidate.value, len(values))
                return candidate
        return SqlDataType.NVARCHAR

    def analyze_column(self, column_name: str, samples: Sequence[str | None]) -> ColumnTypeInfo:
        values = [s for s in samples if not is_blank(s)]
        if not values:
            return ColumnTypeInfo(
                data_type=SqlDataType.NVARCHAR,
                max_length=NVARCHAR_DEFAULT_LENGTH,
                sql_definition=f"NVARCHAR({NVARCHAR_DEFAULT_LENGTH})",
            )
        data_type = self.infer(column_name, values)
        if data_type is SqlDataType.DECIMAL:
            precision, scale = decimal_sizing(values)
            return ColumnTypeInfo(
                data_type=data_type,
                precision=precision,
                scale=scale,
                sql_definition=f"DECIMAL({precision},{scale})",
            )
        if data_type is SqlDataType.NVARCHAR:
            length = nvarchar_length(values)
            definition = "NVARCHAR(MAX)" if length == NVARCHAR_MAX else f"NVARCHAR({length})"
            return ColumnTypeInfo(data_type=data_type, max_length=length, sql_definition=definition)
        return ColumnTypeInfo(data_type=data_type, sql_definition=data_type.value)

    def infer_schema(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str | None]],
        sample_size: int = 100,
    ) -> dict[str, ColumnTypeInfo]:
        """Infer one ``ColumnTypeInfo`` per header from the first ``sample_size`` rows.

        Short rows contribute empty values for their missing columns.
        """
        sample = rows[:sample_size] if sample_size > 0 else rows
        schema: dict[str, ColumnTypeInfo] = {}
        for idx, header in enumerate(headers):
            column = [row[idx] if idx < len(row) else None for row in sample]
            schema[header] = self.analyze_column(header, column)
        return schema
