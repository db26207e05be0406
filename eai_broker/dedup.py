"""Publish-side idempotency helpers.

A message hash identifies one logical record from one producer on one
interface. ``MessageBox.publish`` looks the hash up inside the configured
dedup window and returns the existing message id instead of inserting a
duplicate row.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from typing import Any


def canonical_json(document: Any) -> str:
    """Serialize ``document`` with sorted keys and no insignificant whitespace."""
    return json.dumps(document, sort_keys=True, separators=(",", ":"), default=str)


def compute_message_hash(
    interface_name: str,
    producer_instance_guid: uuid.UUID | None,
    payload: dict[str, Any],
) -> str:
    """Return the SHA-256 hex digest for a payload published on an interface.

    Example:
        >>> a = compute_message_hash("orders", None, {"record": {"id": 1, "x": 2}})
        >>> b = compute_message_hash("orders", None, {"record": {"x": 2, "id": 1}})
        >>> a == b
        True
    """
    producer = str(producer_instance_guid) if producer_instance_guid else ""
    digest = hashlib.sha256()
    digest.update(interface_name.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(producer.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(canonical_json(payload).encode("utf-8"))
    return digest.hexdigest()
