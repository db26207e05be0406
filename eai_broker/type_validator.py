"""Value validation and conversion for inferred SQL column types.

Raw tabular input arrives as text. ``TypeValidator`` decides whether a text
value fits a ``SqlDataType`` and converts it into the matching Python value:

- ``INT`` → ``int`` (32-bit range, optional sign and surrounding whitespace)
- ``DECIMAL`` → ``decimal.Decimal`` (thousands separators allowed, no exponent)
- ``DATETIME2`` → ``datetime.datetime``
- ``BIT`` → ``bool``
- ``UNIQUEIDENTIFIER`` → ``uuid.UUID``
- ``NVARCHAR`` → the value unchanged

Empty or whitespace-only values are valid for every type and convert to
``None``. ``validate`` and ``convert`` share one parser per type, so a value
validates exactly when it converts.

Examples:
    >>> v = TypeValidator()
    >>> v.validate(" 42 ", SqlDataType.INT)
    True
    >>> v.convert("1,234.50", SqlDataType.DECIMAL)
    Decimal('1234.50')
    >>> v.convert("  ", SqlDataType.BIT) is None
    True
"""
from __future__ import annotations

import re
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable

from eai_broker.errors import FormatError


class SqlDataType(str, Enum):
    INT = "INT"
    DECIMAL = "DECIMAL"
    DATETIME2 = "DATETIME2"
    BIT = "BIT"
    UNIQUEIDENTIFIER = "UNIQUEIDENTIFIER"
    NVARCHAR = "NVARCHAR"


INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1

_INT_RE = re.compile(r"^[+-]?[0-9]+$")
_DECIMAL_RE = re.compile(r"^[+-]?(?:[0-9][0-9,]*)?(?:\.[0-9]*)?$")
_ISO_PREFIX_RE = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}")

_HEX32 = r"[0-9a-fA-F]{32}"
_HEX_D = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
_GUID_RE = re.compile(rf"^(?:{_HEX32}|{_HEX_D}|\{{{_HEX_D}\}}|\({_HEX_D}\))$")

BIT_TRUE = frozenset({"true", "yes", "1", "y"})
BIT_FALSE = frozenset({"false", "no", "0", "n"})

# General US-style layouts tried before the explicit list
GENERAL_DATETIME_FORMATS = [
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %I:%M %p",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d, %Y",
    "%b %d, %Y",
]

# Ordered; first match wins. Month-first comes before day-first.
DATETIME_FORMATS = [
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%SZ",
    "%m/%d/%Y",
    "%d.%m.%Y",
    "%d/%m/%Y",
]


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_int(text: str) -> int:
    stripped = text.strip()
    if not _INT_RE.match(stripped):
        raise FormatError(text, SqlDataType.INT.value)
    number = int(stripped)
    if number < INT32_MIN or number > INT32_MAX:
        raise FormatError(text, SqlDataType.INT.value)
    return number


def _parse_decimal(text: str) -> Decimal:
    stripped = text.strip()
    if not _DECIMAL_RE.match(stripped) or not any(ch.isdigit() for ch in stripped):
        raise FormatError(text, SqlDataType.DECIMAL.value)
    try:
        return Decimal(stripped.replace(",", ""))
    except InvalidOperation as exc:
        raise FormatError(text, SqlDataType.DECIMAL.value) from exc


def _try_formats(text: str, formats: list[str]) -> datetime | None:
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def _parse_datetime(text: str) -> datetime:
    stripped = text.strip()
    if _ISO_PREFIX_RE.match(stripped):
        try:
            return datetime.fromisoformat(stripped)
        except ValueError:
            pass
    parsed = _try_formats(stripped, GENERAL_DATETIME_FORMATS)
    if parsed is None:
        parsed = _try_formats(stripped, DATETIME_FORMATS)
    if parsed is None:
        raise FormatError(text, SqlDataType.DATETIME2.value)
    return parsed


def _parse_bit(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in BIT_TRUE:
        return True
    if lowered in BIT_FALSE:
        return False
    raise FormatError(text, SqlDataType.BIT.value)


def _parse_guid(text: str) -> uuid.UUID:
    stripped = text.strip()
    if not _GUID_RE.match(stripped):
        raise FormatError(text, SqlDataType.UNIQUEIDENTIFIER.value)
    return uuid.UUID(stripped.strip("{}()"))


_PARSERS: dict[SqlDataType, Callable[[str], Any]] = {
    SqlDataType.INT: _parse_int,
    SqlDataType.DECIMAL: _parse_decimal,
    SqlDataType.DATETIME2: _parse_datetime,
    SqlDataType.BIT: _parse_bit,
    SqlDataType.UNIQUEIDENTIFIER: _parse_guid,
}


class TypeValidator:
    """Validate and convert raw text values against a ``SqlDataType``."""

    def validate(self, value: Any, data_type: SqlDataType) -> bool:
        """Return True when ``value`` can be converted to ``data_type``. Never raises.

        An unknown type name is not valid for any value.
        """
        try:
            data_type = SqlDataType(data_type)
        except ValueError:
            return False
        try:
            self.convert(value, data_type)
        except FormatError:
            return False
        return True

    def convert(self, value: Any, data_type: SqlDataType) -> Any:
        """Convert ``value`` to the Python representation of ``data_type``.

        Raises:
            FormatError: when the value does not fit the type.
        """
        if is_blank(value):
            return None
        data_type = SqlDataType(data_type)
        if data_type is SqlDataType.NVARCHAR:
            return value
        text = value if isinstance(value, str) else str(value)
        return _PARSERS[data_type](text)
