"""Adapter instance orchestrator: one compute unit per adapter instance.

Each adapter instance runs in its own compute unit, named deterministically
from the instance guid (``compute_unit_id``). Because the name is a pure
function of the guid, ``ensure`` is idempotent: it returns the existing unit
unchanged, and concurrent calls for the same guid converge on the single unit
whose ``create`` won (the losers see ``ComputeUnitConflictError``).

Provisioning failures are never raised from ``ensure``. They are persisted on
the adapter instance row (``status``/``status_detail``) and reported as
``Failed`` (with the platform's detail) by ``get_status``, so a caller in any
process polls for the outcome like any other status change.

Disabling an instance or deleting an interface goes through
``disable_instance`` / ``delete_interface`` so the matching compute units are
torn down as well.

Status state machine (enforced by provisioners):

    Provisioning -> Running | Failed
    Running      -> Stopped | Failed
    Stopped      -> Provisioning | Running
    Failed       -> Provisioning

Example:
```python
orchestrator = AdapterInstanceOrchestrator(InMemoryComputeProvisioner(auto_start=True), AdapterConfigStore())
unit_id = await orchestrator.ensure(instance)
state = await orchestrator.wait_for_running(instance.adapter_instance_guid, max_wait_s=30)
```
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import TYPE_CHECKING, Any, Mapping, Optional, Protocol

from eai_broker.adapter_kinds import get_adapter_kind, is_secret_setting
from eai_broker.config import Settings
from eai_broker.constants import (
    COMPUTE_UNIT_HEX_LENGTH,
    COMPUTE_UNIT_PREFIX,
    ENV_ADAPTER_NAME,
    ENV_ADAPTER_TYPE,
    ENV_INSTANCE_GUID,
    ENV_INSTANCE_NAME,
    ENV_INTERFACE_NAME,
    ENV_SETTING_PREFIX,
)
from eai_broker.errors import AdapterConfigurationError, ComputeUnitConflictError, ProvisioningError
from eai_broker.metrics import PROVISIONING_TOTAL
from eai_broker.provisioner import (
    ComputeProvisioner,
    ComputeUnitState,
    ComputeUnitStatus,
)
from eai_broker.retry import poll_with_backoff

if TYPE_CHECKING:
    from eai_broker.interfaces import InterfaceRegistry


logger = logging.getLogger(__name__)

KNOWN_ADAPTER_IMAGES = ("csv", "sqlserver", "file", "sftp", "sap", "dynamics365", "crm")

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def compute_unit_id(instance_guid: uuid.UUID | str) -> str:
    """Return the compute unit name for an adapter instance.

    ``"ca-"`` followed by the first 24 lowercase hex digits of the guid.

    Example:
        >>> compute_unit_id(uuid.UUID("3F2504E0-4F89-11D3-9A0C-0305E82C3301"))
        'ca-3f2504e04f8911d39a0c0305'
    """
    guid = _as_uuid(instance_guid)
    return f"{COMPUTE_UNIT_PREFIX}{guid.hex[:COMPUTE_UNIT_HEX_LENGTH]}"


def _as_uuid(value: uuid.UUID | str) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def image_for(adapter_name: str, registry: str) -> str:
    name = adapter_name.strip().lower()
    if name in KNOWN_ADAPTER_IMAGES:
        return f"{registry}/{name}-adapter:latest"
    return f"{registry}/generic-adapter:latest"


def setting_env_name(key: str) -> str:
    """``ReceiveFolder`` -> ``ADAPTER_SETTING_RECEIVE_FOLDER``."""
    snake = _CAMEL_BOUNDARY.sub("_", key.strip())
    snake = re.sub(r"[^0-9A-Za-z]+", "_", snake).strip("_")
    return f"{ENV_SETTING_PREFIX}{snake.upper()}"


class SettingsSource(Protocol):
    async def get_all_settings(self, adapter_name: str, adapter_type: str) -> dict[str, Optional[str]]: ...


class AdapterInstanceOrchestrator:
    """Ensure, observe and tear down compute units for adapter instances.

    Properties:
    - `provisioner`: platform boundary (see ``eai_broker.provisioner``)
    - `config_store`: source of adapter settings (``AdapterConfigStore``)
    - `registry`: container registry used for image names
    - `instances`: ``InterfaceRegistry`` holding the persisted unit status
    """

    def __init__(
        self,
        provisioner: ComputeProvisioner,
        config_store: SettingsSource,
        registry: str | None = None,
        settings: Settings | None = None,
        instances: InterfaceRegistry | None = None,
    ):
        self.settings = settings or Settings()
        self.provisioner = provisioner
        self.config_store = config_store
        self.registry = registry or self.settings.container_registry
        if instances is None:
            from eai_broker.interfaces import InterfaceRegistry

            instances = InterfaceRegistry()
        self.instances = instances

    async def resolve_settings(self, instance: Any, overrides: Mapping[str, str] | None = None) -> dict[str, str]:
        stored = await self.config_store.get_all_settings(instance.adapter_name, instance.adapter_type)
        resolved = {k: v for k, v in stored.items() if v is not None}
        if overrides:
            resolved.update(overrides)
        return resolved

    def build_environment(self, instance: Any, adapter_settings: Mapping[str, str]) -> tuple[dict[str, str], dict[str, str]]:
        """Split resolved settings into plain env vars and secrets."""
        env = {
            ENV_INSTANCE_GUID: str(instance.adapter_instance_guid),
            ENV_ADAPTER_NAME: instance.adapter_name,
            ENV_ADAPTER_TYPE: instance.adapter_type,
            ENV_INTERFACE_NAME: instance.interface_name,
            ENV_INSTANCE_NAME: instance.instance_name,
        }
        secrets: dict[str, str] = {}
        for key, value in adapter_settings.items():
            name = setting_env_name(key)
            if is_secret_setting(instance.adapter_name, key):
                secrets[name] = value
            else:
                env[name] = value
        return env, secrets

    async def ensure(self, instance: Any, overrides: Mapping[str, str] | None = None) -> str:
        """Make sure the instance has a compute unit and return its id.

        Never raises for platform or configuration failures; those are
        persisted on the instance and surface as ``Failed`` through
        ``get_status``.
        """
        guid = _as_uuid(instance.adapter_instance_guid)
        unit_id = compute_unit_id(guid)
        log_extra = {"interface": instance.interface_name, "instance_guid": guid}

        try:
            existing = await self.provisioner.get_status(unit_id)
        except ProvisioningError as exc:
            await self._record_failure(guid, str(exc))
            return unit_id
        if existing is not None:
            PROVISIONING_TOTAL.labels(result="existing").inc()
            return unit_id

        try:
            adapter_settings = await self.resolve_settings(instance, overrides)
            problems = get_adapter_kind(instance.adapter_name).validate_instance_config(
                instance.adapter_type, adapter_settings
            )
            if problems:
                raise AdapterConfigurationError(instance.adapter_name, problems)
            env, secrets = self.build_environment(instance, adapter_settings)
            await self.provisioner.create(unit_id, image_for(instance.adapter_name, self.registry), env, secrets)
        except ComputeUnitConflictError:
            PROVISIONING_TOTAL.labels(result="converged").inc()
            logger.info("compute unit %s already being created; converged", unit_id, extra=log_extra)
            await self.instances.record_instance_status(guid, ComputeUnitStatus.PROVISIONING.value)
            return unit_id
        except (ProvisioningError, AdapterConfigurationError) as exc:
            await self._record_failure(guid, str(exc))
            logger.warning("provisioning %s failed: %s", unit_id, exc, extra=log_extra)
            return unit_id

        await self.instances.record_instance_status(guid, ComputeUnitStatus.PROVISIONING.value)
        PROVISIONING_TOTAL.labels(result="created").inc()
        logger.info("created compute unit %s for %s", unit_id, instance.instance_name, extra=log_extra)
        return unit_id

    async def _record_failure(self, instance_guid: uuid.UUID, detail: str) -> None:
        PROVISIONING_TOTAL.labels(result="failed").inc()
        await self.instances.record_instance_status(instance_guid, ComputeUnitStatus.FAILED.value, detail)

    async def get_status(self, instance_guid: uuid.UUID | str) -> Optional[ComputeUnitState]:
        """Return the unit state, a persisted failure, or None when not found yet."""
        guid = _as_uuid(instance_guid)
        state = await self.provisioner.get_status(compute_unit_id(guid))
        if state is not None:
            return state
        instance = await self.instances.get_instance(guid)
        if instance is not None and instance.status == ComputeUnitStatus.FAILED.value:
            return ComputeUnitState(ComputeUnitStatus.FAILED, instance.status_detail)
        return None

    async def wait_for_running(
        self,
        instance_guid: uuid.UUID | str,
        max_wait_s: float | None = None,
        delays: list[int] | None = None,
    ) -> ComputeUnitState:
        """Poll until the unit is Running or Failed, or until ``max_wait_s`` elapses.

        A unit that is still not Running at the deadline is reported as
        ``Provisioning``.
        """
        wait_s = self.settings.provision_max_wait_seconds if max_wait_s is None else max_wait_s
        state, settled = await poll_with_backoff(
            lambda: self.get_status(instance_guid),
            lambda s: s is not None and s.status in (ComputeUnitStatus.RUNNING, ComputeUnitStatus.FAILED),
            wait_s,
            delays,
        )
        if settled and state is not None:
            return state
        return ComputeUnitState(ComputeUnitStatus.PROVISIONING, f"not running after {wait_s:g}s")

    async def teardown(self, instance_guid: uuid.UUID | str, remove: bool = False) -> bool:
        """Stop (and with ``remove`` delete) the unit. Returns False when nothing was provisioned.

        A persisted failure is cleared either way.
        """
        guid = _as_uuid(instance_guid)
        unit_id = compute_unit_id(guid)
        if await self.provisioner.get_status(unit_id) is None:
            await self.instances.record_instance_status(guid, None)
            return False
        await self.provisioner.stop(unit_id)
        if remove:
            await self.provisioner.delete(unit_id)
        state = await self.provisioner.get_status(unit_id)
        await self.instances.record_instance_status(guid, state.status.value if state else None)
        logger.info("tore down compute unit %s (remove=%s)", unit_id, remove)
        return True

    async def disable_instance(self, instance_guid: uuid.UUID | str, remove: bool = False) -> Any:
        """Disable the instance, then stop its compute unit.

        Raises:
            InterfaceConfigurationError: the instance does not exist, or it is a
                source whose interface still has enabled destinations. Nothing
                is torn down in that case.
        """
        guid = _as_uuid(instance_guid)
        instance = await self.instances.set_instance_enabled(guid, False)
        await self.teardown(guid, remove=remove)
        return instance

    async def delete_interface(self, interface_name: str) -> list[uuid.UUID]:
        """Delete the interface with its instances and remove their compute units."""
        guids = await self.instances.delete_interface(interface_name)
        for guid in guids:
            try:
                await self.teardown(guid, remove=True)
            except ProvisioningError as exc:
                logger.warning(
                    "could not remove compute unit %s: %s",
                    compute_unit_id(guid),
                    exc,
                    extra={"interface": interface_name, "instance_guid": guid},
                )
        return guids
