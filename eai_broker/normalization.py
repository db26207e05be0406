"""Apply an inferred schema to raw rows before they are published.

Policies (``Settings.validation_policy``):
- ``reject_record`` (default): any invalid field rejects the whole record with
  a ``RecordValidationError`` listing every offending field.
- ``null_field``: invalid fields are set to ``None`` and reported back in
  ``NormalizedRecord.nulled_fields``; the record is kept.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from eai_broker.config import ValidationPolicy
from eai_broker.errors import FormatError, RecordValidationError
from eai_broker.type_inference import ColumnTypeInfo
from eai_broker.type_validator import SqlDataType, TypeValidator


logger = logging.getLogger(__name__)


@dataclass
class NormalizedRecord:
    values: dict[str, Any]
    nulled_fields: dict[str, str] = field(default_factory=dict)


class RecordNormalizer:
    """Convert raw column values into typed values according to a schema.

    Columns missing from the schema pass through as NVARCHAR.
    """

    def __init__(
        self,
        schema: Mapping[str, ColumnTypeInfo | SqlDataType],
        policy: ValidationPolicy = "reject_record",
        validator: TypeValidator | None = None,
    ):
        if policy not in ("reject_record", "null_field"):
            raise ValueError(f"Unknown validation policy: {policy}")
        self.schema = {
            name: info.data_type if isinstance(info, ColumnTypeInfo) else SqlDataType(info)
            for name, info in schema.items()
        }
        self.policy = policy
        self.validator = validator or TypeValidator()

    def normalize(self, row: Mapping[str, Any], row_number: int | None = None) -> NormalizedRecord:
        values: dict[str, Any] = {}
        errors: dict[str, str] = {}
        for column, raw in row.items():
            data_type = self.schema.get(column, SqlDataType.NVARCHAR)
            try:
                values[column] = self.validator.convert(raw, data_type)
            except FormatError as exc:
                errors[column] = str(exc)
                values[column] = None
        if errors and self.policy == "reject_record":
            raise RecordValidationError(errors, row_number=row_number)
        if errors:
            logger.info("row %s: nulled %d invalid field(s): %s", row_number, len(errors), ", ".join(errors))
        return NormalizedRecord(values=values, nulled_fields=errors)
