"""Adapter kinds: what settings an adapter understands and how to check them.

Adapter settings are stored as a generic key/value bag (see
``eai_broker.adapter_config``). An ``AdapterKind`` describes the keys a kind
understands and validates a resolved settings dict for one instance. The
orchestrator validates through the kind before provisioning a compute unit.

Built-in kinds:
- ``CSV``: file based source and destination
- ``SqlServer``: table based source and destination
- anything else: ``GenericAdapterKind`` (accepts any settings)

Example:
    >>> kind = get_adapter_kind("CSV")
    >>> kind.validate_instance_config("Source", {"ReceiveFolder": "in"})
    []
    >>> kind.validate_instance_config("Source", {})
    ['ReceiveFolder is required']
"""
from __future__ import annotations

import asyncio
import csv
import fnmatch
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from eai_broker.constants import ADAPTER_TYPE_DESTINATION, ADAPTER_TYPE_SOURCE, ADAPTER_TYPES
from eai_broker.errors import AdapterConfigurationError


logger = logging.getLogger(__name__)

DEFAULT_FIELD_SEPARATOR = "║"


@dataclass(frozen=True)
class SettingSpec:
    name: str
    required: bool = False
    default: Optional[str] = None
    secret: bool = False
    description: str = ""


class AdapterKind(Protocol):
    name: str
    supported_types: tuple[str, ...]

    def describe_settings(self) -> list[SettingSpec]: ...

    def with_defaults(self, settings: dict[str, str]) -> dict[str, str]: ...

    def validate_instance_config(self, adapter_type: str, settings: dict[str, str]) -> list[str]: ...


def _check_int(settings: dict[str, str], key: str, minimum: int = 1) -> list[str]:
    raw = settings.get(key)
    if raw is None or raw == "":
        return []
    try:
        value = int(raw)
    except ValueError:
        return [f"{key} must be an integer, got {raw!r}"]
    if value < minimum:
        return [f"{key} must be >= {minimum}, got {value}"]
    return []


class _SpecAdapterKind:
    """Shared validation over a ``SettingSpec`` list."""

    name: str = ""
    supported_types: tuple[str, ...] = ADAPTER_TYPES
    settings: tuple[SettingSpec, ...] = ()

    def describe_settings(self) -> list[SettingSpec]:
        return list(self.settings)

    def with_defaults(self, settings: dict[str, str]) -> dict[str, str]:
        resolved = {s.name: s.default for s in self.settings if s.default is not None}
        resolved.update(settings)
        return resolved

    def validate_instance_config(self, adapter_type: str, settings: dict[str, str]) -> list[str]:
        problems: list[str] = []
        if adapter_type not in self.supported_types:
            problems.append(f"{self.name} does not support adapter type {adapter_type!r}")
        resolved = self.with_defaults(settings)
        for spec in self.settings:
            if spec.required and not (resolved.get(spec.name) or "").strip():
                problems.append(f"{spec.name} is required")
        return problems


class CsvAdapterKind(_SpecAdapterKind):
    name = "CSV"
    settings = (
        SettingSpec("ReceiveFolder", required=True, description="Folder read by a source or written by a destination"),
        SettingSpec("FileMask", default="*.txt", description="Wildcard for source files; file name template for destinations"),
        SettingSpec("FieldSeparator", default=DEFAULT_FIELD_SEPARATOR, description="Single character column separator"),
        SettingSpec("BatchSize", default="100", description="Rows published per debatching batch"),
    )

    def validate_instance_config(self, adapter_type: str, settings: dict[str, str]) -> list[str]:
        problems = super().validate_instance_config(adapter_type, settings)
        separator = self.with_defaults(settings).get("FieldSeparator") or ""
        if len(separator) != 1:
            problems.append(f"FieldSeparator must be a single character, got {separator!r}")
        problems.extend(_check_int(settings, "BatchSize"))
        return problems


class SqlServerAdapterKind(_SpecAdapterKind):
    name = "SqlServer"
    settings = (
        SettingSpec("Server", required=True, description="Host name, optionally with port"),
        SettingSpec("Database", required=True),
        SettingSpec("User", required=True),
        SettingSpec("Password", required=True, secret=True),
        SettingSpec("TableName", required=True, description="Table polled by a source or written by a destination"),
        SettingSpec("PollingInterval", default="60", description="Seconds between source polls"),
    )

    def validate_instance_config(self, adapter_type: str, settings: dict[str, str]) -> list[str]:
        problems = super().validate_instance_config(adapter_type, settings)
        if adapter_type == ADAPTER_TYPE_SOURCE:
            problems.extend(_check_int(settings, "PollingInterval"))
        return problems


class GenericAdapterKind(_SpecAdapterKind):
    """Schema-free kind used for adapters without a built-in description."""

    def __init__(self, name: str):
        self.name = name


_BUILTIN_KINDS: dict[str, _SpecAdapterKind] = {
    kind.name.lower(): kind for kind in (CsvAdapterKind(), SqlServerAdapterKind())
}


def get_adapter_kind(adapter_name: str) -> AdapterKind:
    return _BUILTIN_KINDS.get(adapter_name.lower()) or GenericAdapterKind(adapter_name)


def is_secret_setting(adapter_name: str, key: str) -> bool:
    """True for settings declared secret by their kind or whose name looks like a credential."""
    kind = get_adapter_kind(adapter_name)
    for spec in kind.describe_settings():
        if spec.name.lower() == key.lower() and spec.secret:
            return True
    lowered = key.lower().replace("_", "")
    return any(marker in lowered for marker in ("password", "secret", "key", "token", "connectionstring"))


def expand_file_mask(file_mask: str, now: datetime | None = None) -> str:
    """Turn a destination file mask into a concrete file name.

    ``$datetime`` and wildcards are replaced with a ``yyyyMMddHHmmss.fff``
    UTC timestamp; an empty mask becomes ``output.txt``.

    Example:
        >>> expand_file_mask("out_$datetime.csv", datetime(2024, 1, 2, 3, 4, 5, 6000))
        'out_20240102030405.006.csv'
    """
    if not file_mask or not file_mask.strip():
        return "output.txt"
    now = now or datetime.now(timezone.utc)
    stamp = now.strftime("%Y%m%d%H%M%S") + f".{now.microsecond // 1000:03d}"
    name = file_mask.replace("$datetime", stamp)
    if "*" in name or "?" in name:
        name = name.replace("*", stamp).replace("?", stamp[0])
    return name


def matches_file_mask(file_name: str, file_mask: str) -> bool:
    """Case-insensitive wildcard match; an empty mask matches everything."""
    if not file_mask or not file_mask.strip():
        return True
    return fnmatch.fnmatchcase(file_name.lower(), file_mask.strip().lower())


class CsvFileWriter:
    """Destination handler that appends records to ``<ReceiveFolder>/<FileMask>``.

    A new file gets a header row built from the message headers. Values are
    written in header order with the configured separator.
    """

    def __init__(self, receive_folder: str, file_mask: str = "output.txt", field_separator: str = DEFAULT_FIELD_SEPARATOR):
        self.receive_folder = receive_folder
        self.file_mask = file_mask
        self.field_separator = field_separator

    @classmethod
    def from_settings(cls, settings: dict[str, str]) -> "CsvFileWriter":
        resolved = CsvAdapterKind().with_defaults(settings)
        problems = CsvAdapterKind().validate_instance_config(ADAPTER_TYPE_DESTINATION, settings)
        if problems:
            raise AdapterConfigurationError("CSV", problems)
        return cls(resolved["ReceiveFolder"], resolved["FileMask"], resolved["FieldSeparator"])

    async def __call__(self, message: Any, payload: dict[str, Any]) -> dict[str, Any]:
        path = os.path.join(self.receive_folder, expand_file_mask(self.file_mask))
        headers = list(payload.get("headers") or payload.get("record", {}).keys())
        record = payload.get("record", {})
        row = ["" if record.get(h) is None else str(record.get(h)) for h in headers]
        await asyncio.to_thread(self._append, path, headers, row)
        logger.debug("wrote message %s to %s", getattr(message, "message_id", None), path)
        return {"file": path, "columns": len(headers)}

    def _append(self, path: str, headers: list[str], row: list[str]) -> None:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        is_new = not os.path.exists(path)
        with open(path, "a", newline="", encoding="utf-8") as fh:
            writer = csv.writer(fh, delimiter=self.field_separator)
            if is_new:
                writer.writerow(headers)
            writer.writerow(row)
