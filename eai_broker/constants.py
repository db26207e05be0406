"""Shared constants for message, subscription and adapter lifecycle values.

These values centralize naming so producers, destination workers, the sweep
and the orchestrator stay consistent across the codebase and in the database.

Message status (messagebox_messages.status) tracks *production* only:
- ``Pending``: Row inserted together with its subscription snapshot.
- ``Processed``: Production confirmed; the message is distributed.
- ``Error``: Production failed; kept for operator inspection, never distributed.

Subscription status (message_subscriptions.status) tracks *distribution*:
- ``Pending``: The destination instance still needs the message.
- ``Processed``: The destination acknowledged successful processing.
- ``Error``: The destination failed; blocks garbage collection until retried.

Adapter types:
- ``Source``: produces records into the MessageBox.
- ``Destination``: consumes records through its subscriptions.
"""

STATUS_PENDING = "Pending"
STATUS_PROCESSED = "Processed"
STATUS_ERROR = "Error"

MESSAGE_STATUSES = (STATUS_PENDING, STATUS_PROCESSED, STATUS_ERROR)
TERMINAL_STATUSES = (STATUS_PROCESSED, STATUS_ERROR)

ADAPTER_TYPE_SOURCE = "Source"
ADAPTER_TYPE_DESTINATION = "Destination"
ADAPTER_TYPES = (ADAPTER_TYPE_SOURCE, ADAPTER_TYPE_DESTINATION)

# Column limits mirrored from the staging tables
MAX_INTERFACE_NAME = 200
MAX_ADAPTER_NAME = 100
MAX_ADAPTER_TYPE = 50
MAX_INSTANCE_NAME = 200
MAX_SETTING_KEY = 200
MAX_STATUS = 50

# Compute unit naming: "ca-" + first 24 hex digits of the instance guid
COMPUTE_UNIT_PREFIX = "ca-"
COMPUTE_UNIT_HEX_LENGTH = 24

# Environment variables injected into every compute unit
ENV_INSTANCE_GUID = "ADAPTER_INSTANCE_GUID"
ENV_ADAPTER_NAME = "ADAPTER_NAME"
ENV_ADAPTER_TYPE = "ADAPTER_TYPE"
ENV_INTERFACE_NAME = "INTERFACE_NAME"
ENV_INSTANCE_NAME = "INSTANCE_NAME"
ENV_SETTING_PREFIX = "ADAPTER_SETTING_"
