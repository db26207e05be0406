"""Adapter configuration store backed by SQLAlchemy (async).

Settings are a generic ``(adapter_name, adapter_type, setting_key) -> value``
bag with an ``is_active`` flag. Instance-specific overrides are layered on
top by the caller (see ``AdapterInstanceOrchestrator.ensure``).

Example:
    >>> store = AdapterConfigStore()
    >>> await store.set_setting("CSV", "Source", "ReceiveFolder", "inbound/orders")
    >>> await store.get_all_settings("CSV", "Source")
    {'ReceiveFolder': 'inbound/orders'}
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from eai_broker.db import get_session
from eai_broker.models import AdapterSettingRecord
from eai_broker.orm_models import AdapterConfiguration, utcnow


logger = logging.getLogger(__name__)


class AdapterConfigStore:
    """Read and write adapter settings."""

    async def get_setting(self, adapter_name: str, adapter_type: str, setting_key: str) -> Optional[str]:
        """Return the active value for a key, or ``None`` when missing or inactive."""
        async with get_session() as session:
            res = await session.execute(
                select(AdapterConfiguration.setting_value).where(
                    AdapterConfiguration.adapter_name == adapter_name,
                    AdapterConfiguration.adapter_type == adapter_type,
                    AdapterConfiguration.setting_key == setting_key,
                    AdapterConfiguration.is_active.is_(True),
                )
            )
            return res.scalar_one_or_none()

    async def set_setting(
        self,
        adapter_name: str,
        adapter_type: str,
        setting_key: str,
        setting_value: Optional[str],
        description: Optional[str] = None,
    ) -> None:
        """Insert or update a setting; an inactive row is reactivated.

        Raises:
            pydantic.ValidationError: for empty or over-long names and keys.
        """
        record = AdapterSettingRecord(
            adapter_name=adapter_name,
            adapter_type=adapter_type,  # type: ignore[arg-type]
            setting_key=setting_key,
            setting_value=setting_value,
            description=description,
        )
        try:
            await self._upsert(record)
        except IntegrityError:
            # Lost an insert race for the same key; the row exists now
            await self._upsert(record)

    async def _upsert(self, record: AdapterSettingRecord) -> None:
        async with get_session() as session:
            values = {"setting_value": record.setting_value, "is_active": True, "updated_at": utcnow()}
            if record.description is not None:
                values["description"] = record.description
            res = await session.execute(
                update(AdapterConfiguration)
                .where(
                    AdapterConfiguration.adapter_name == record.adapter_name,
                    AdapterConfiguration.adapter_type == record.adapter_type,
                    AdapterConfiguration.setting_key == record.setting_key,
                )
                .values(**values)
            )
            if res.rowcount == 0:
                session.add(AdapterConfiguration(**record.model_dump()))
            await session.commit()
        logger.debug("set %s/%s %s", record.adapter_name, record.adapter_type, record.setting_key)

    async def deactivate_setting(self, adapter_name: str, adapter_type: str, setting_key: str) -> bool:
        """Mark a setting inactive. Returns False when no active row matched."""
        async with get_session() as session:
            res = await session.execute(
                update(AdapterConfiguration)
                .where(
                    AdapterConfiguration.adapter_name == adapter_name,
                    AdapterConfiguration.adapter_type == adapter_type,
                    AdapterConfiguration.setting_key == setting_key,
                    AdapterConfiguration.is_active.is_(True),
                )
                .values(is_active=False, updated_at=utcnow())
            )
            await session.commit()
            return res.rowcount > 0

    async def get_all_settings(self, adapter_name: str, adapter_type: str) -> dict[str, Optional[str]]:
        """Return every active setting of an adapter kind and type as a dict."""
        async with get_session() as session:
            res = await session.execute(
                select(AdapterConfiguration.setting_key, AdapterConfiguration.setting_value)
                .where(
                    AdapterConfiguration.adapter_name == adapter_name,
                    AdapterConfiguration.adapter_type == adapter_type,
                    AdapterConfiguration.is_active.is_(True),
                )
                .order_by(AdapterConfiguration.setting_key)
            )
            return {key: value for key, value in res.all()}
