"""Unit deployment: player intents to pod create/delete requests.

The synchronous half (``deploy``, ``delete`` and the outcome handlers) runs
inside the reconciliation loop and is the only code that debits credits or
registers optimistic units.  The cluster calls run in background tasks whose
results come back to the loop as ``ApplyOutcome``/``DeleteOutcome`` messages.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

from cubeharvest.cluster.manifest import new_unit_name, render_manifest
from cubeharvest.domain import economy
from cubeharvest.domain import world as world_rules
from cubeharvest.domain.enums import (
    GoneReason,
    IntentOrigin,
    LedgerEntryKind,
    UnitKind,
    UnitStatus,
)
from cubeharvest.domain.errors import (
    ClusterError,
    ClusterUnavailable,
    InsufficientCredits,
    InvalidAddress,
    NotFound,
    UnknownUnit,
)
from cubeharvest.domain.messages import ApplyOutcome, DeleteOutcome
from cubeharvest.domain.models import AstroUnit, UnitID, World
from cubeharvest.domain.rules_config import DEFAULT_RULES, RulesConfig
from cubeharvest.interfaces.cluster import IClusterClient, IManifestRenderer

logger = logging.getLogger(__name__)


def validate_address(address: str | None) -> str:
    """Return the normalized form of an IPv4/IPv6 address or raise ``InvalidAddress``."""

    if not address:
        raise InvalidAddress(address)
    try:
        return str(ipaddress.ip_address(address.strip()))
    except ValueError as exc:
        raise InvalidAddress(address) from exc


class UnitDeployer:
    """Translate deploy/delete intents into cluster requests."""

    def __init__(
        self,
        cluster: IClusterClient,
        post: Callable[[object], None],
        *,
        rules: RulesConfig = DEFAULT_RULES,
        render: IManifestRenderer = render_manifest,
        clock: Callable[[], float] = time.monotonic,
        name_factory: Callable[[UnitKind], str] = new_unit_name,
    ) -> None:
        self._cluster = cluster
        self._post = post
        self._rules = rules
        self._render = render
        self._clock = clock
        self._name_factory = name_factory
        self._tasks: set[asyncio.Task[None]] = set()

    # --- Loop-side API ------------------------------------------------------------

    def deploy(
        self, world: World, kind: UnitKind, target_address: str | None = None
    ) -> AstroUnit:
        """Validate, pay for and register a pending unit, then request its pod."""

        target = validate_address(target_address) if kind == UnitKind.MINER else None
        cost = economy.unit_price(world, kind, self._rules.economy)
        if not world.ledger.can_afford(cost):
            raise InsufficientCredits(cost, world.ledger.balance)
        if world.degraded:
            raise ClusterUnavailable("cluster unavailable; deploys are suspended")

        name = self._unique_name(world, kind)
        manifest = self._render(kind, target, name)
        unit = AstroUnit(
            id=UnitID(name),
            kind=kind,
            target_address=target,
            cost_paid=cost,
            deadline=self._clock() + self._rules.deploy.deploy_timeout_seconds,
        )
        world.ledger.debit(cost, LedgerEntryKind.SPEND, f"deploy {kind}", unit_id=unit.id)
        world_rules.register_pending(world, unit)
        logger.info("deploying %s %s for %d credits", kind, unit.id, cost)
        self._spawn(self._apply(unit.id, manifest), name=f"apply-{unit.id}")
        return unit

    def delete(
        self,
        world: World,
        unit_id: str,
        origin: IntentOrigin = IntentOrigin.PLAYER,
    ) -> AstroUnit | None:
        """Mark a unit TERMINATING and request its pod deletion.

        Chaos deletes only target RUNNING units and return None, without any
        cluster call, when the target has moved on.
        """

        unit = world.units.get(UnitID(unit_id))
        if origin == IntentOrigin.CHAOS:
            if unit is None or unit.status != UnitStatus.RUNNING or world.degraded:
                logger.debug("chaos target %s is no longer running; skipped", unit_id)
                return None
        elif unit is None or not unit.is_live:
            raise UnknownUnit(unit_id)
        elif world.degraded:
            raise ClusterUnavailable("cluster unavailable; deletes are suspended")

        unit.status_before_delete = unit.status
        world_rules.transition(world, unit, UnitStatus.TERMINATING)
        logger.info("%s delete requested for %s", origin, unit.id)
        self.request_delete(unit.id)
        return unit

    def request_delete(self, unit_id: str) -> None:
        self._spawn(self._delete(UnitID(unit_id)), name=f"delete-{unit_id}")

    def handle_apply_outcome(self, world: World, outcome: ApplyOutcome) -> None:
        unit = world.units.get(outcome.unit_id)
        if unit is None:
            return
        if outcome.ok:
            if unit.status == UnitStatus.TERMINATING:
                # deleted while the create was still in flight
                self.request_delete(unit.id)
            return
        if unit.observed:
            return
        if unit.status in (UnitStatus.PENDING, UnitStatus.TERMINATING):
            logger.warning("create of %s failed: %s", unit.id, outcome.error)
            world_rules.mark_gone(world, unit, GoneReason.CREATE_FAILED)

    def handle_delete_outcome(self, world: World, outcome: DeleteOutcome) -> None:
        unit = world.units.get(outcome.unit_id)
        if unit is None or outcome.ok:
            return
        logger.warning("delete of %s failed: %s", outcome.unit_id, outcome.error)
        world_rules.restore_after_failed_delete(world, unit)

    # --- Background side ----------------------------------------------------------

    async def _apply(self, unit_id: UnitID, manifest: dict[str, Any]) -> None:
        try:
            await self._cluster.apply_pod(manifest)
        except ClusterError as exc:
            self._post(ApplyOutcome(unit_id, error=str(exc)))
        else:
            self._post(ApplyOutcome(unit_id))

    async def _delete(self, unit_id: UnitID) -> None:
        try:
            await self._cluster.delete_pod(unit_id)
        except NotFound:
            self._post(DeleteOutcome(unit_id, not_found=True))
        except ClusterError as exc:
            self._post(DeleteOutcome(unit_id, error=str(exc)))
        else:
            self._post(DeleteOutcome(unit_id))

    def _spawn(self, coro: Coroutine[Any, Any, None], *, name: str) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("%s crashed", task.get_name(), exc_info=task.exception())

    def _unique_name(self, world: World, kind: UnitKind) -> str:
        name = self._name_factory(kind)
        while UnitID(name) in world.units:
            name = self._name_factory(kind)
        return name

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight cluster request to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()
