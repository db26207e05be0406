"""Interface and adapter instance configuration.

An interface wires one source adapter instance to any number of destination
adapter instances. These tables are long-lived; the MessageBox reads the
enabled destinations of an interface at publish time to build its
subscription snapshot.

Invariant enforced here: an interface with an enabled destination always has
an enabled source. Enabling a destination without one, or disabling the
source while destinations are enabled, raises ``InterfaceConfigurationError``.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from eai_broker.constants import ADAPTER_TYPE_DESTINATION, ADAPTER_TYPE_SOURCE
from eai_broker.db import get_session
from eai_broker.errors import InterfaceConfigurationError
from eai_broker.models import AdapterInstanceRecord, InterfaceRecord
from eai_broker.orchestrator import compute_unit_id
from eai_broker.orm_models import AdapterInstance, InterfaceConfiguration, utcnow


logger = logging.getLogger(__name__)


async def _enabled_instances(session: AsyncSession, interface_name: str, adapter_type: str) -> list[AdapterInstance]:
    res = await session.execute(
        select(AdapterInstance)
        .where(
            AdapterInstance.interface_name == interface_name,
            AdapterInstance.adapter_type == adapter_type,
            AdapterInstance.is_enabled.is_(True),
        )
        .order_by(AdapterInstance.created_at, AdapterInstance.instance_name)
    )
    return list(res.scalars().all())


class InterfaceRegistry:
    """CRUD for interfaces and their adapter instances."""

    async def create_interface(
        self, interface_name: str, description: Optional[str] = None, is_enabled: bool = True
    ) -> InterfaceConfiguration:
        record = InterfaceRecord(interface_name=interface_name, description=description, is_enabled=is_enabled)
        row = InterfaceConfiguration(**record.model_dump())
        try:
            async with get_session() as session:
                session.add(row)
                await session.commit()
        except IntegrityError as exc:
            raise InterfaceConfigurationError(f"Interface '{interface_name}' already exists") from exc
        logger.info("created interface %s", interface_name, extra={"interface": interface_name})
        return row

    async def get_interface(self, interface_name: str) -> Optional[InterfaceConfiguration]:
        async with get_session() as session:
            res = await session.execute(
                select(InterfaceConfiguration).where(InterfaceConfiguration.interface_name == interface_name)
            )
            return res.scalar_one_or_none()

    async def list_interfaces(self) -> list[InterfaceConfiguration]:
        async with get_session() as session:
            res = await session.execute(select(InterfaceConfiguration).order_by(InterfaceConfiguration.interface_name))
            return list(res.scalars().all())

    async def set_interface_enabled(self, interface_name: str, enabled: bool) -> bool:
        async with get_session() as session:
            res = await session.execute(
                update(InterfaceConfiguration)
                .where(InterfaceConfiguration.interface_name == interface_name)
                .values(is_enabled=enabled, updated_at=utcnow())
            )
            await session.commit()
            return res.rowcount > 0

    async def delete_interface(self, interface_name: str) -> list[uuid.UUID]:
        """Delete an interface and its instances; return the removed instance guids.

        Messages already in the MessageBox are left alone and drain normally.
        """
        async with get_session() as session:
            async with session.begin():
                res = await session.execute(
                    select(AdapterInstance.adapter_instance_guid).where(AdapterInstance.interface_name == interface_name)
                )
                guids = list(res.scalars().all())
                await session.execute(delete(AdapterInstance).where(AdapterInstance.interface_name == interface_name))
                await session.execute(
                    delete(InterfaceConfiguration).where(InterfaceConfiguration.interface_name == interface_name)
                )
        logger.info("deleted interface %s (%d instances)", interface_name, len(guids), extra={"interface": interface_name})
        return guids

    async def add_instance(
        self,
        interface_name: str,
        instance_name: str,
        adapter_name: str,
        adapter_type: str,
        *,
        is_enabled: bool = True,
        instance_guid: Optional[uuid.UUID] = None,
    ) -> AdapterInstance:
        """Bind an adapter to an interface and assign its compute unit id.

        Raises:
            InterfaceConfigurationError: unknown interface, a second source, or an
                enabled destination on an interface without an enabled source.
        """
        fields = dict(
            interface_name=interface_name,
            instance_name=instance_name,
            adapter_name=adapter_name,
            adapter_type=adapter_type,
            is_enabled=is_enabled,
        )
        if instance_guid is not None:
            fields["adapter_instance_guid"] = instance_guid
        record = AdapterInstanceRecord(**fields)  # type: ignore[arg-type]

        async with get_session() as session:
            async with session.begin():
                exists = await session.execute(
                    select(InterfaceConfiguration.id).where(InterfaceConfiguration.interface_name == interface_name)
                )
                if exists.scalar_one_or_none() is None:
                    raise InterfaceConfigurationError(f"Interface '{interface_name}' does not exist")
                if record.adapter_type == ADAPTER_TYPE_SOURCE:
                    res = await session.execute(
                        select(AdapterInstance.adapter_instance_guid).where(
                            AdapterInstance.interface_name == interface_name,
                            AdapterInstance.adapter_type == ADAPTER_TYPE_SOURCE,
                        )
                    )
                    if res.first() is not None:
                        raise InterfaceConfigurationError(f"Interface '{interface_name}' already has a source instance")
                elif record.is_enabled and not await _enabled_instances(session, interface_name, ADAPTER_TYPE_SOURCE):
                    raise InterfaceConfigurationError(
                        f"Interface '{interface_name}' has no enabled source; cannot add an enabled destination"
                    )
                row = AdapterInstance(
                    **record.model_dump(),
                    compute_unit_id=compute_unit_id(record.adapter_instance_guid),
                )
                session.add(row)
        logger.info(
            "added %s instance %s (%s) to %s",
            record.adapter_type,
            record.instance_name,
            record.adapter_name,
            interface_name,
            extra={"interface": interface_name, "instance_guid": record.adapter_instance_guid},
        )
        return row

    async def set_instance_enabled(self, instance_guid: uuid.UUID, enabled: bool) -> AdapterInstance:
        async with get_session() as session:
            async with session.begin():
                instance = await session.get(AdapterInstance, instance_guid)
                if instance is None:
                    raise InterfaceConfigurationError(f"Adapter instance {instance_guid} does not exist")
                name = instance.interface_name
                if instance.adapter_type == ADAPTER_TYPE_DESTINATION and enabled:
                    if not await _enabled_instances(session, name, ADAPTER_TYPE_SOURCE):
                        raise InterfaceConfigurationError(
                            f"Interface '{name}' has no enabled source; cannot enable destination {instance_guid}"
                        )
                if instance.adapter_type == ADAPTER_TYPE_SOURCE and not enabled:
                    if await _enabled_instances(session, name, ADAPTER_TYPE_DESTINATION):
                        raise InterfaceConfigurationError(
                            f"Interface '{name}' has enabled destinations; disable them before the source"
                        )
                instance.is_enabled = enabled
                instance.updated_at = utcnow()
        return instance

    async def get_instance(self, instance_guid: uuid.UUID) -> Optional[AdapterInstance]:
        async with get_session() as session:
            return await session.get(AdapterInstance, instance_guid)

    async def list_instances(self, interface_name: str, adapter_type: Optional[str] = None) -> list[AdapterInstance]:
        async with get_session() as session:
            query = select(AdapterInstance).where(AdapterInstance.interface_name == interface_name)
            if adapter_type:
                query = query.where(AdapterInstance.adapter_type == adapter_type)
            res = await session.execute(query.order_by(AdapterInstance.created_at, AdapterInstance.instance_name))
            return list(res.scalars().all())

    async def enabled_destinations(
        self, interface_name: str, session: Optional[AsyncSession] = None
    ) -> list[AdapterInstance]:
        """Return the enabled destination instances of an interface.

        Pass ``session`` to read inside an open transaction (the publish snapshot).
        """
        if session is not None:
            return await _enabled_instances(session, interface_name, ADAPTER_TYPE_DESTINATION)
        async with get_session() as own:
            return await _enabled_instances(own, interface_name, ADAPTER_TYPE_DESTINATION)

    async def enabled_source(self, interface_name: str) -> Optional[AdapterInstance]:
        async with get_session() as session:
            sources = await _enabled_instances(session, interface_name, ADAPTER_TYPE_SOURCE)
            return sources[0] if sources else None

    async def record_instance_status(
        self, instance_guid: uuid.UUID, status: Optional[str], detail: Optional[str] = None
    ) -> bool:
        """Persist the last observed compute unit status for display."""
        async with get_session() as session:
            res = await session.execute(
                update(AdapterInstance)
                .where(AdapterInstance.adapter_instance_guid == instance_guid)
                .values(status=status, status_detail=detail, updated_at=utcnow())
            )
            await session.commit()
            return res.rowcount > 0
