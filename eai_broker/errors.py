"""
Exception classes for the broker.
Each error builds its own message from the identifiers it is raised with.
"""

from __future__ import annotations

import uuid


class BrokerError(Exception):
    """Base exception for MessageBox, configuration and orchestration errors."""


class FormatError(BrokerError, ValueError):
    """Raised when a raw value cannot be converted to its target SQL type."""

    def __init__(self, value: object, type_name: str):
        self.value = value
        self.type_name = type_name
        super().__init__(f"Cannot parse {value!r} as {type_name}")


class RecordValidationError(BrokerError):
    """Raised when a record is rejected before it reaches the MessageBox."""

    def __init__(self, field_errors: dict[str, str], row_number: int | None = None):
        self.field_errors = dict(field_errors)
        self.row_number = row_number
        where = f" (row {row_number})" if row_number is not None else ""
        fields = ", ".join(f"{name}: {err}" for name, err in self.field_errors.items())
        super().__init__(f"Record rejected{where}: {fields}")


class ProductionError(BrokerError):
    """Raised when a message could not be written into the MessageBox."""

    def __init__(self, interface_name: str, error: str):
        self.interface_name = interface_name
        super().__init__(f"Failed to publish message for interface '{interface_name}': {error}")


class MessageNotFoundError(BrokerError):
    """Raised when a message id does not exist (or was already swept)."""

    def __init__(self, message_id: uuid.UUID):
        self.message_id = message_id
        super().__init__(f"Message not found: {message_id}")


class SubscriptionNotFoundError(BrokerError):
    """Raised when no subscription exists for a (message, subscriber) pair."""

    def __init__(self, message_id: uuid.UUID, subscriber_instance_guid: uuid.UUID):
        self.message_id = message_id
        self.subscriber_instance_guid = subscriber_instance_guid
        super().__init__(
            f"Subscription not found: message={message_id} subscriber={subscriber_instance_guid}"
        )


class InterfaceConfigurationError(BrokerError):
    """Raised when an interface/adapter-instance change would break the wiring invariant."""


class AdapterConfigurationError(BrokerError):
    """Raised when adapter settings fail validation for their adapter kind."""

    def __init__(self, adapter_name: str, problems: list[str]):
        self.adapter_name = adapter_name
        self.problems = list(problems)
        super().__init__(f"Invalid configuration for adapter '{adapter_name}': {'; '.join(self.problems)}")


class ProvisioningError(BrokerError):
    """Raised by a compute provisioner when a platform call fails."""

    def __init__(self, compute_unit_id: str, error: str):
        self.compute_unit_id = compute_unit_id
        super().__init__(f"Provisioning failed for compute unit '{compute_unit_id}': {error}")


class ComputeUnitConflictError(ProvisioningError):
    """Raised by a compute provisioner when the compute unit already exists."""

    def __init__(self, compute_unit_id: str):
        super().__init__(compute_unit_id, "compute unit already exists")


class AdapterInstanceDisabledError(BrokerError):
    """Raised when a disabled adapter instance tries to produce into the MessageBox."""

    def __init__(self, instance_guid: uuid.UUID):
        self.instance_guid = instance_guid
        super().__init__(f"Adapter instance {instance_guid} is disabled")
