"""
Manage the compute unit of an adapter instance.

Commands:
- ``ensure``: create the unit if it does not exist (idempotent)
- ``status``: print the current unit state
- ``wait``: poll until Running/Failed or ``--max-wait`` seconds
- ``teardown``: stop the unit (``--remove`` also deletes it)
- ``disable``: disable the instance and stop its unit
- ``delete-interface``: delete an interface with its instances and remove their units

The last observed state is written back to ``adapter_instances.status`` for
display; a stored ``Failed`` is only replaced by a state the platform actually
reports. ``COMPUTE_API_URL`` selects the REST compute API; without it an
in-process provisioner is used, which only makes sense for local dry runs.

Usage:
  python -m scripts.provision ensure --instance-guid 6f1c2a0e-...
  python -m scripts.provision wait --instance-guid 6f1c2a0e-... --max-wait 300
  python -m scripts.provision teardown --instance-guid 6f1c2a0e-... --remove
  python -m scripts.provision disable --instance-guid 6f1c2a0e-...
  python -m scripts.provision delete-interface --interface orders
"""

from __future__ import annotations

import argparse
import asyncio
import json
import uuid

from eai_broker.adapter_config import AdapterConfigStore
from eai_broker.config import Settings
from eai_broker.db import dispose_engine
from eai_broker.errors import InterfaceConfigurationError
from eai_broker.interfaces import InterfaceRegistry
from eai_broker.orchestrator import AdapterInstanceOrchestrator, compute_unit_id
from eai_broker.process_log import configure_logging
from eai_broker.provisioner import ComputeUnitState, HttpComputeProvisioner, InMemoryComputeProvisioner


def _print_state(instance_guid: uuid.UUID, state: ComputeUnitState | None) -> None:
    print(json.dumps({
        "adapter_instance_guid": str(instance_guid),
        "compute_unit_id": compute_unit_id(instance_guid),
        "status": state.status.value if state else None,
        "detail": state.detail if state else None,
    }))


async def _instance_command(
    command: str,
    orchestrator: AdapterInstanceOrchestrator,
    registry: InterfaceRegistry,
    instance_guid: uuid.UUID,
    *,
    max_wait: float | None,
    remove: bool,
) -> None:
    instance = await registry.get_instance(instance_guid)
    if instance is None:
        raise SystemExit(f"Adapter instance {instance_guid} does not exist")

    if command == "ensure":
        await orchestrator.ensure(instance)
    elif command == "wait":
        state = await orchestrator.wait_for_running(instance_guid, max_wait)
        # The deadline result is synthetic; persist what the platform reports
        observed = await orchestrator.get_status(instance_guid)
        if observed is not None:
            await registry.record_instance_status(instance_guid, observed.status.value, observed.detail)
        _print_state(instance_guid, state)
        return
    elif command == "teardown":
        if not await orchestrator.teardown(instance_guid, remove=remove):
            print(f"Nothing provisioned for {instance_guid}")
    elif command == "disable":
        try:
            await orchestrator.disable_instance(instance_guid, remove=remove)
        except InterfaceConfigurationError as exc:
            raise SystemExit(str(exc))

    state = await orchestrator.get_status(instance_guid)
    if command == "status" and state is not None:
        await registry.record_instance_status(instance_guid, state.status.value, state.detail)
    _print_state(instance_guid, state)


async def run(
    command: str,
    instance_guid: uuid.UUID | None,
    interface_name: str | None,
    *,
    max_wait: float | None,
    remove: bool,
) -> None:
    settings = Settings()
    if settings.compute_api_url:
        provisioner = HttpComputeProvisioner(settings.compute_api_url, settings.compute_api_token)
    else:
        print("COMPUTE_API_URL not set; using an in-process provisioner")
        provisioner = InMemoryComputeProvisioner(auto_start=True)
    registry = InterfaceRegistry()
    orchestrator = AdapterInstanceOrchestrator(provisioner, AdapterConfigStore(), settings=settings, instances=registry)

    try:
        if command == "delete-interface":
            guids = await orchestrator.delete_interface(interface_name)
            print(json.dumps({"interface": interface_name, "removed_instances": [str(g) for g in guids]}))
        else:
            await _instance_command(command, orchestrator, registry, instance_guid, max_wait=max_wait, remove=remove)
    finally:
        if isinstance(provisioner, HttpComputeProvisioner):
            await provisioner.aclose()
        await dispose_engine()


def main() -> None:
    parser = argparse.ArgumentParser(description="Manage adapter instance compute units")
    parser.add_argument("command", choices=["ensure", "status", "wait", "teardown", "disable", "delete-interface"])
    parser.add_argument("--instance-guid", type=uuid.UUID)
    parser.add_argument("--interface", help="Interface name (delete-interface)")
    parser.add_argument("--max-wait", type=float, help="Seconds to wait (default PROVISION_MAX_WAIT_SECONDS)")
    parser.add_argument("--remove", action="store_true", help="Delete the unit after stopping it")
    args = parser.parse_args()
    if args.command == "delete-interface":
        if not args.interface:
            parser.error("--interface is required for delete-interface")
    elif args.instance_guid is None:
        parser.error(f"--instance-guid is required for {args.command}")

    configure_logging()
    asyncio.run(run(args.command, args.instance_guid, args.interface, max_wait=args.max_wait, remove=args.remove))


if __name__ == "__main__":
    main()
