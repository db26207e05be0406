"""SQLAlchemy ORM models for the MessageBox, subscriptions and configuration tables.

These declarative models mirror the staging and configuration schema used by
the broker. They are intentionally minimal and typed to make queries readable
and safe. Column limits live in ``eai_broker.constants`` and are enforced at
the boundary by the pydantic records in ``eai_broker.models``.

Models provided:
- ``MessageBoxMessage``: One in-flight record, garbage-collected after delivery
- ``MessageSubscription``: Delivery status per (message, destination instance)
- ``AdapterConfiguration``: Generic settings bag per adapter kind and type
- ``InterfaceConfiguration``: Named source → destinations wiring
- ``AdapterInstance``: One provisioned binding of an adapter to an interface
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from eai_broker.constants import (
    MAX_ADAPTER_NAME,
    MAX_ADAPTER_TYPE,
    MAX_INSTANCE_NAME,
    MAX_INTERFACE_NAME,
    MAX_SETTING_KEY,
    MAX_STATUS,
    STATUS_PENDING,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# JSONB on Postgres, plain JSON elsewhere (SQLite in local runs and tests)
JsonDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class MessageBoxMessage(Base):
    """One logical record in flight, independent of how many subscribers need it.

    Fields:
        - message_id: Public identifier (UUID primary key)
        - interface_name: Interface the record was published on
        - producing_adapter_name / producing_adapter_type: Producer identity
        - producing_instance_guid: Source adapter instance that published it
        - payload: ``{"headers": [...], "schema": {...}, "record": {...}}``
        - message_hash: SHA-256 used for publish-side deduplication
        - trace_context: W3C trace headers captured at publish time
        - status: Production status (Pending | Processed | Error)
        - created_at / processed_at: Lifecycle timestamps
        - error_message: Production failure detail
    """
    __tablename__ = "messagebox_messages"
    __table_args__ = (
        Index("ix_messagebox_messages_dedup", "message_hash", "interface_name", "producing_instance_guid"),
    )

    message_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    interface_name: Mapped[str] = mapped_column(String(MAX_INTERFACE_NAME), index=True)
    producing_adapter_name: Mapped[str] = mapped_column(String(MAX_ADAPTER_NAME))
    producing_adapter_type: Mapped[str] = mapped_column(String(MAX_ADAPTER_TYPE))
    producing_instance_guid: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    payload: Mapped[dict] = mapped_column(JsonDocument)
    message_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    trace_context: Mapped[dict | None] = mapped_column(JsonDocument, nullable=True)
    status: Mapped[str] = mapped_column(String(MAX_STATUS), default=STATUS_PENDING)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)


class MessageSubscription(Base):
    """Delivery status of one message for one destination adapter instance.

    Created at publish time from the interface's enabled destinations (a
    snapshot). Rows are only ever moved out of ``Pending`` by conditional
    updates, so a late or duplicate acknowledgement cannot overwrite them.
    """
    __tablename__ = "message_subscriptions"
    __table_args__ = (
        UniqueConstraint("message_id", "subscriber_instance_guid", name="uq_subscription_message_subscriber"),
        Index("ix_message_subscriptions_subscriber_status", "subscriber_instance_guid", "status"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    message_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("messagebox_messages.message_id", ondelete="CASCADE"), index=True
    )
    interface_name: Mapped[str] = mapped_column(String(MAX_INTERFACE_NAME), index=True)
    subscriber_adapter_name: Mapped[str] = mapped_column(String(MAX_ADAPTER_NAME))
    subscriber_instance_guid: Mapped[uuid.UUID] = mapped_column(Uuid)
    status: Mapped[str] = mapped_column(String(MAX_STATUS), default=STATUS_PENDING)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processing_details: Mapped[str | None] = mapped_column(Text, nullable=True)


class AdapterConfiguration(Base):
    """One setting of an adapter kind, keyed by ``(adapter_name, adapter_type, setting_key)``."""
    __tablename__ = "adapter_configurations"
    __table_args__ = (
        UniqueConstraint("adapter_name", "adapter_type", "setting_key", name="uq_adapter_setting"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    adapter_name: Mapped[str] = mapped_column(String(MAX_ADAPTER_NAME))
    adapter_type: Mapped[str] = mapped_column(String(MAX_ADAPTER_TYPE))
    setting_key: Mapped[str] = mapped_column(String(MAX_SETTING_KEY))
    setting_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class InterfaceConfiguration(Base):
    """A named wiring of one source instance to one or more destination instances."""
    __tablename__ = "interface_configurations"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    interface_name: Mapped[str] = mapped_column(String(MAX_INTERFACE_NAME), unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class AdapterInstance(Base):
    """One configured, independently provisioned binding of an adapter to an interface."""
    __tablename__ = "adapter_instances"

    adapter_instance_guid: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    interface_name: Mapped[str] = mapped_column(
        String(MAX_INTERFACE_NAME),
        ForeignKey("interface_configurations.interface_name", ondelete="CASCADE"),
        index=True,
    )
    instance_name: Mapped[str] = mapped_column(String(MAX_INSTANCE_NAME))
    adapter_name: Mapped[str] = mapped_column(String(MAX_ADAPTER_NAME))
    adapter_type: Mapped[str] = mapped_column(String(MAX_ADAPTER_TYPE))
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    compute_unit_id: Mapped[str] = mapped_column(String(32))
    status: Mapped[str | None] = mapped_column(String(MAX_STATUS), nullable=True)
    status_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
