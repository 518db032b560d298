"""Provider-to-record reconciliation shared by every tracked instance type."""
from __future__ import annotations

import logging
from typing import Protocol

from tenantdb.core.errors import ProviderError
from tenantdb.domain.states import PROVIDER_AVAILABLE, PROVIDER_ERROR
from tenantdb.providers.rds import InstanceState


logger = logging.getLogger(__name__)


class InstanceDescriber(Protocol):
    async def describe_instance(self, identifier: str) -> InstanceState: ...


class ReconcileTarget(Protocol):
    """A local record that mirrors one provider instance."""

    @property
    def instance_identifier(self) -> str: ...

    async def record_status(self, status: str) -> None:
        """Persist the observed provider status verbatim."""

    async def record_read_failure(self, message: str) -> None:
        """Note a failed provider read without touching lifecycle state."""

    async def claim_endpoint(self, address: str, port: int | None) -> bool:
        """Store the endpoint if none is stored yet; True when this call stored it."""

    async def on_ready(self) -> None:
        """Side effects owed once per record after the endpoint is claimed."""


async def reconcile_instance(gateway: InstanceDescriber, target: ReconcileTarget) -> str:
    # Every write sets an observed value, so repeating a reconcile is safe.
    try:
        state = await gateway.describe_instance(target.instance_identifier)
    except ProviderError as exc:
        logger.error(
            "rds_status_check_failed instance_identifier=%s error=%s",
            target.instance_identifier,
            exc,
        )
        await target.record_read_failure(str(exc))
        return PROVIDER_ERROR

    await target.record_status(state.status)
    if state.status == PROVIDER_AVAILABLE and state.has_endpoint:
        claimed = await target.claim_endpoint(state.address or "", state.port)
        if claimed:
            logger.info(
                "rds_instance_available instance_identifier=%s host=%s port=%s",
                target.instance_identifier,
                state.address,
                state.port,
            )
            await target.on_ready()
    return state.status
