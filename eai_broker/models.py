"""Pydantic record models validated before rows are written.

These models carry the required/max-length constraints of the staging and
configuration tables so violations are rejected at the boundary instead of
surfacing as database errors, and make the call sites more explicit than
passing generic dicts around.
"""
from __future__ import annotations

import uuid
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from eai_broker.constants import (
    MAX_ADAPTER_NAME,
    MAX_ADAPTER_TYPE,
    MAX_INSTANCE_NAME,
    MAX_INTERFACE_NAME,
    MAX_SETTING_KEY,
)


AdapterType = Literal["Source", "Destination"]


class ProducerIdentity(BaseModel):
    """Identity of the source adapter instance publishing a record."""
    model_config = ConfigDict(extra="forbid")

    adapter_name: str = Field(min_length=1, max_length=MAX_ADAPTER_NAME)
    adapter_type: str = Field(min_length=1, max_length=MAX_ADAPTER_TYPE)
    instance_guid: Optional[uuid.UUID] = None


class ColumnSchema(BaseModel):
    """Serialized column type as stored in a message payload."""
    model_config = ConfigDict(extra="forbid")

    data_type: str
    sql_definition: str
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None


class MessagePayload(BaseModel):
    """JSON document stored in ``messagebox_messages.payload``.

    ``schema`` is a reserved attribute name on ``BaseModel``, so the field is
    exposed as ``columns`` and serialized under its alias.
    """
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    headers: list[str]
    columns: dict[str, ColumnSchema] = Field(default_factory=dict, alias="schema")
    record: dict[str, Any]

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class InterfaceRecord(BaseModel):
    """Row for ``interface_configurations``."""
    model_config = ConfigDict(extra="forbid")

    interface_name: str = Field(min_length=1, max_length=MAX_INTERFACE_NAME)
    description: Optional[str] = None
    is_enabled: bool = True


class AdapterInstanceRecord(BaseModel):
    """Row for ``adapter_instances`` before the compute unit id is assigned."""
    model_config = ConfigDict(extra="forbid")

    adapter_instance_guid: uuid.UUID = Field(default_factory=uuid.uuid4)
    interface_name: str = Field(min_length=1, max_length=MAX_INTERFACE_NAME)
    instance_name: str = Field(min_length=1, max_length=MAX_INSTANCE_NAME)
    adapter_name: str = Field(min_length=1, max_length=MAX_ADAPTER_NAME)
    adapter_type: AdapterType
    is_enabled: bool = True


class AdapterSettingRecord(BaseModel):
    """Row for ``adapter_configurations``."""
    model_config = ConfigDict(extra="forbid")

    adapter_name: str = Field(min_length=1, max_length=MAX_ADAPTER_NAME)
    adapter_type: AdapterType
    setting_key: str = Field(min_length=1, max_length=MAX_SETTING_KEY)
    setting_value: Optional[str] = None
    description: Optional[str] = None
