"""Compute provisioners: the platform boundary of the orchestrator.

A provisioner creates, inspects, stops and deletes compute units by id. The
orchestrator never talks to a compute platform directly; it depends on the
``ComputeProvisioner`` protocol so local runs and tests can use
``InMemoryComputeProvisioner`` while deployments use ``HttpComputeProvisioner``
against a REST compute API.

Error contract:
- ``create`` raises ``ComputeUnitConflictError`` when the id already exists
- other platform failures raise ``ProvisioningError``
- ``get_status`` returns ``None`` for an unknown id
- ``stop`` / ``delete`` return False for an unknown id
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol

import httpx

from eai_broker.errors import ComputeUnitConflictError, ProvisioningError


logger = logging.getLogger(__name__)


class ComputeUnitStatus(str, Enum):
    PROVISIONING = "Provisioning"
    RUNNING = "Running"
    STOPPED = "Stopped"
    FAILED = "Failed"


ALLOWED_TRANSITIONS: dict[ComputeUnitStatus, frozenset[ComputeUnitStatus]] = {
    ComputeUnitStatus.PROVISIONING: frozenset({ComputeUnitStatus.RUNNING, ComputeUnitStatus.FAILED}),
    ComputeUnitStatus.RUNNING: frozenset({ComputeUnitStatus.STOPPED, ComputeUnitStatus.FAILED}),
    ComputeUnitStatus.STOPPED: frozenset({ComputeUnitStatus.PROVISIONING, ComputeUnitStatus.RUNNING}),
    ComputeUnitStatus.FAILED: frozenset({ComputeUnitStatus.PROVISIONING}),
}


def can_transition(current: ComputeUnitStatus, target: ComputeUnitStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True)
class ComputeUnitState:
    status: ComputeUnitStatus
    detail: Optional[str] = None


class ComputeProvisioner(Protocol):
    async def create(self, compute_unit_id: str, image: str, env: dict[str, str], secrets: dict[str, str]) -> None: ...

    async def get_status(self, compute_unit_id: str) -> Optional[ComputeUnitState]: ...

    async def stop(self, compute_unit_id: str) -> bool: ...

    async def delete(self, compute_unit_id: str) -> bool: ...


@dataclass
class ComputeUnit:
    compute_unit_id: str
    image: str
    env: dict[str, str]
    secrets: dict[str, str] = field(repr=False)
    status: ComputeUnitStatus = ComputeUnitStatus.PROVISIONING
    detail: Optional[str] = None


class InMemoryComputeProvisioner:
    """Process-local provisioner that enforces the status transition table.

    New units start in ``Provisioning``. With ``auto_start=True`` they move to
    ``Running`` immediately; otherwise tests drive them with ``set_status``.
    """

    def __init__(self, auto_start: bool = False, create_delay_s: float = 0.0):
        self.units: dict[str, ComputeUnit] = {}
        self.auto_start = auto_start
        self.create_delay_s = create_delay_s
        self.create_calls = 0
        self._lock = asyncio.Lock()

    async def create(self, compute_unit_id: str, image: str, env: dict[str, str], secrets: dict[str, str]) -> None:
        self.create_calls += 1
        if self.create_delay_s:
            await asyncio.sleep(self.create_delay_s)
        async with self._lock:
            if compute_unit_id in self.units:
                raise ComputeUnitConflictError(compute_unit_id)
            unit = ComputeUnit(compute_unit_id, image, dict(env), dict(secrets))
            if self.auto_start:
                unit.status = ComputeUnitStatus.RUNNING
            self.units[compute_unit_id] = unit

    async def get_status(self, compute_unit_id: str) -> Optional[ComputeUnitState]:
        unit = self.units.get(compute_unit_id)
        if unit is None:
            return None
        return ComputeUnitState(unit.status, unit.detail)

    async def set_status(self, compute_unit_id: str, status: ComputeUnitStatus, detail: Optional[str] = None) -> None:
        """Move a unit along the transition table.

        Raises:
            ProvisioningError: unknown unit or a transition the table forbids.
        """
        async with self._lock:
            unit = self.units.get(compute_unit_id)
            if unit is None:
                raise ProvisioningError(compute_unit_id, "compute unit not found")
            if unit.status != status and not can_transition(unit.status, status):
                raise ProvisioningError(
                    compute_unit_id, f"illegal transition {unit.status.value} -> {status.value}"
                )
            unit.status = status
            unit.detail = detail

    async def stop(self, compute_unit_id: str) -> bool:
        async with self._lock:
            unit = self.units.get(compute_unit_id)
            if unit is None:
                return False
            if unit.status == ComputeUnitStatus.STOPPED:
                return True
            if unit.status == ComputeUnitStatus.PROVISIONING:
                # Nothing started yet; abandon the rollout
                unit.status = ComputeUnitStatus.FAILED
                unit.detail = "stopped during provisioning"
                return True
            if not can_transition(unit.status, ComputeUnitStatus.STOPPED):
                return False
            unit.status = ComputeUnitStatus.STOPPED
            unit.detail = None
            return True

    async def delete(self, compute_unit_id: str) -> bool:
        async with self._lock:
            return self.units.pop(compute_unit_id, None) is not None


class HttpComputeProvisioner:
    """Provisioner for a REST compute API.

    Endpoints:
    - ``POST   /compute-units`` (201 created, 409 conflict)
    - ``GET    /compute-units/{id}`` (404 when unknown) → ``{"status": ..., "detail": ...}``
    - ``POST   /compute-units/{id}/stop``
    - ``DELETE /compute-units/{id}``

    Example:
    ```python
    async with HttpComputeProvisioner(settings.compute_api_url, settings.compute_api_token) as p:
        await p.create("ca-0123456789abcdef01234567", image, env, secrets)
    ```
    """

    def __init__(self, base_url: str, token: str = "", timeout_s: float = 10.0, client: httpx.AsyncClient | None = None):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout_s)

    async def __aenter__(self) -> "HttpComputeProvisioner":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, compute_unit_id: str, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise ProvisioningError(compute_unit_id, f"{method} {url}: {exc}") from exc

    @staticmethod
    def _raise_for_status(compute_unit_id: str, resp: httpx.Response) -> None:
        if resp.status_code >= 400:
            raise ProvisioningError(compute_unit_id, f"HTTP {resp.status_code}: {resp.text[:200]}")

    async def create(self, compute_unit_id: str, image: str, env: dict[str, str], secrets: dict[str, str]) -> None:
        body = {"id": compute_unit_id, "image": image, "env": env, "secrets": secrets}
        resp = await self._request(compute_unit_id, "POST", "/compute-units", json=body)
        if resp.status_code == 409:
            raise ComputeUnitConflictError(compute_unit_id)
        self._raise_for_status(compute_unit_id, resp)

    async def get_status(self, compute_unit_id: str) -> Optional[ComputeUnitState]:
        resp = await self._request(compute_unit_id, "GET", f"/compute-units/{compute_unit_id}")
        if resp.status_code == 404:
            return None
        self._raise_for_status(compute_unit_id, resp)
        data = resp.json()
        try:
            status = ComputeUnitStatus(data.get("status"))
        except ValueError as exc:
            raise ProvisioningError(compute_unit_id, f"unknown status {data.get('status')!r}") from exc
        return ComputeUnitState(status, data.get("detail"))

    async def stop(self, compute_unit_id: str) -> bool:
        resp = await self._request(compute_unit_id, "POST", f"/compute-units/{compute_unit_id}/stop")
        if resp.status_code == 404:
            return False
        self._raise_for_status(compute_unit_id, resp)
        return True

    async def delete(self, compute_unit_id: str) -> bool:
        resp = await self._request(compute_unit_id, "DELETE", f"/compute-units/{compute_unit_id}")
        if resp.status_code == 404:
            return False
        self._raise_for_status(compute_unit_id, resp)
        return True
