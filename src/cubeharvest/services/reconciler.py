"""The single-writer reconciliation loop.

Everything that changes the world goes through :class:`ReconciliationLoop`:
cluster events from the observer, intents from the API and the chaos
injector, outcomes of background cluster calls and economy ticks.  Messages
are applied in arrival order, one batch at a time, and an immutable
:class:`WorldSnapshot` is published after every batch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from cubeharvest.cluster.manifest import new_unit_name, render_manifest
from cubeharvest.domain import economy
from cubeharvest.domain import world as world_rules
from cubeharvest.domain.enums import LedgerEntryKind, UnitKind, UnitStatus, WatchEventType
from cubeharvest.domain.errors import CubeHarvestError
from cubeharvest.domain.messages import (
    Ack,
    ApplyOutcome,
    ConnectivityChanged,
    DeleteIntent,
    DeleteOutcome,
    DeployIntent,
    EconomyTick,
    Intent,
    NodeEvent,
    PodEvent,
)
from cubeharvest.domain.models import UnitID, World, WorldSnapshot
from cubeharvest.domain.rules_config import DEFAULT_RULES, RulesConfig
from cubeharvest.interfaces.cluster import IClusterClient, IManifestRenderer
from cubeharvest.services.deployer import UnitDeployer

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Envelope:
    """An intent together with the future its submitter is waiting on."""

    intent: Intent
    reply: asyncio.Future[Ack]


class ReconciliationLoop:
    """Owns the world and applies inbox messages to it."""

    DEFAULT_BATCH_LIMIT = 64

    def __init__(
        self,
        cluster: IClusterClient,
        *,
        rules: RulesConfig = DEFAULT_RULES,
        render: IManifestRenderer = render_manifest,
        clock: Callable[[], float] = time.monotonic,
        tick_interval_seconds: float = 1.0,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        world: World | None = None,
        name_factory: Callable[[UnitKind], str] = new_unit_name,
    ) -> None:
        self._rules = rules
        self._clock = clock
        self._tick_interval = tick_interval_seconds
        self._batch_limit = max(batch_limit, 1)
        self._inbox: asyncio.Queue[object] = asyncio.Queue()
        self._cleanup_requested: set[str] = set()
        self._cleanup_retry: set[str] = set()
        self._task: asyncio.Task[None] | None = None
        self._ticker: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

        if world is None:
            world = World()
            world.ledger.credit(
                rules.economy.starting_credits, LedgerEntryKind.GRANT, "starting credits"
            )
        self.world = world
        self.deployer = UnitDeployer(
            cluster,
            self.post,
            rules=rules,
            render=render,
            clock=clock,
            name_factory=name_factory,
        )
        self._snapshot = self._publish()

    # --- Presentation boundary ----------------------------------------------------

    def snapshot(self) -> WorldSnapshot:
        """Latest published snapshot; never blocks on the writer."""

        return self._snapshot

    def post(self, message: object) -> None:
        """Queue a message without waiting for it to be applied."""

        self._inbox.put_nowait(message)

    async def submit(self, intent: Intent) -> Ack:
        """Queue an intent and wait for the loop's verdict.

        Raises the ``ValidationError`` or ``ClusterUnavailable`` the intent
        was rejected with.
        """

        reply: asyncio.Future[Ack] = asyncio.get_running_loop().create_future()
        self.post(_Envelope(intent, reply))
        return await reply

    @property
    def cleanup_requested(self) -> frozenset[str]:
        return frozenset(self._cleanup_requested)

    @property
    def cleanup_pending_retry(self) -> frozenset[str]:
        return frozenset(self._cleanup_retry)

    @property
    def pending_messages(self) -> int:
        return self._inbox.qsize()

    # --- Loop body ----------------------------------------------------------------

    async def run_once(self, timeout: float | None = None) -> int:
        """Wait for at least one message, then apply a batch.

        Returns the number of messages applied; zero when ``timeout`` expired
        first, in which case only housekeeping runs.
        """

        try:
            first = await asyncio.wait_for(self._inbox.get(), timeout=timeout)
        except TimeoutError:
            self.apply_batch([])
            return 0
        batch = [first]
        while len(batch) < self._batch_limit:
            try:
                batch.append(self._inbox.get_nowait())
            except asyncio.QueueEmpty:
                break
        self.apply_batch(batch)
        return len(batch)

    async def run_until_idle(self) -> None:
        """Apply messages until the inbox and background cluster calls are drained."""

        while True:
            while not self._inbox.empty():
                await self.run_once()
            if not self.deployer.in_flight:
                break
            await self.deployer.drain()
        self.apply_batch([])

    def apply_batch(self, messages: Iterable[object]) -> WorldSnapshot:
        """Apply ``messages`` in order, run housekeeping and publish a snapshot."""

        for message in messages:
            try:
                self._apply(message)
            except Exception:
                logger.exception("failed to apply %r; skipped", message)

        now = self._clock()
        world_rules.expire_pending(self.world, now)
        self.world.links = economy.recompute_links(self.world)
        world_rules.prune_gone(self.world, self._rules.deploy.gone_retention)
        self._snapshot = self._publish()
        return self._snapshot

    def _apply(self, message: object) -> None:
        handlers: dict[type, Callable[[Any], None]] = {
            _Envelope: self._apply_envelope,
            DeployIntent: self._apply_unanswered_intent,
            DeleteIntent: self._apply_unanswered_intent,
            NodeEvent: lambda event: world_rules.apply_node_event(self.world, event),
            PodEvent: self._apply_pod_event,
            ApplyOutcome: lambda outcome: self.deployer.handle_apply_outcome(self.world, outcome),
            DeleteOutcome: self._apply_delete_outcome,
            EconomyTick: self._apply_tick,
            ConnectivityChanged: lambda change: self._set_degraded(
                not change.available, change.reason
            ),
        }
        handler = handlers.get(type(message))
        if handler is None:
            logger.warning("ignoring unknown message %r", message)
            return
        handler(message)

    def _apply_tick(self, tick: EconomyTick) -> None:
        self.world.links = economy.recompute_links(self.world)
        economy.apply_tick(self.world, self._rules.economy, tick.ticks)
        self._retry_cleanups()

    def _apply_unanswered_intent(self, intent: Intent) -> None:
        try:
            self._apply_intent(intent)
        except CubeHarvestError as exc:
            logger.info("intent %r rejected: %s", intent, exc)

    def _apply_envelope(self, envelope: _Envelope) -> None:
        intent, reply = envelope.intent, envelope.reply
        try:
            ack = self._apply_intent(intent)
        except CubeHarvestError as exc:
            logger.info("intent %r rejected: %s", intent, exc)
            if not reply.done():
                reply.set_exception(exc)
            return
        except Exception as exc:
            if not reply.done():
                reply.set_exception(exc)
            raise
        if not reply.done():
            reply.set_result(ack)

    def _apply_intent(self, intent: Intent) -> Ack:
        if isinstance(intent, DeployIntent):
            unit = self.deployer.deploy(self.world, intent.kind, intent.target_address)
            return Ack(unit.id, unit.status)

        unit = self.deployer.delete(self.world, intent.unit_id, intent.origin)
        if unit is not None:
            return Ack(unit.id, unit.status)
        current = self.world.units.get(UnitID(intent.unit_id))
        return Ack(
            UnitID(intent.unit_id),
            current.status if current is not None else UnitStatus.GONE,
            skipped=True,
        )

    def _apply_pod_event(self, event: PodEvent) -> None:
        name = event.pod.name
        if event.type == WatchEventType.DELETED:
            self._cleanup_requested.discard(name)
            self._cleanup_retry.discard(name)
        if not world_rules.apply_pod_event(self.world, event):
            return
        if world_rules.needs_cleanup(self.world, event):
            if name not in self._cleanup_requested:
                logger.info("pod %s belongs to a gone unit; deleting it", name)
                self._request_cleanup(name)

    def _apply_delete_outcome(self, outcome: DeleteOutcome) -> None:
        name = outcome.unit_id
        if name not in self._cleanup_requested:
            self.deployer.handle_delete_outcome(self.world, outcome)
            return
        self._cleanup_requested.discard(name)
        if not outcome.ok:
            logger.warning("cleanup delete of %s failed: %s; will retry", name, outcome.error)
            self._cleanup_retry.add(name)

    def _request_cleanup(self, name: str) -> None:
        self._cleanup_retry.discard(name)
        self._cleanup_requested.add(name)
        self.deployer.request_delete(name)

    def _retry_cleanups(self) -> None:
        if self.world.degraded:
            return
        for name in sorted(self._cleanup_retry):
            logger.info("retrying cleanup delete of %s", name)
            self._request_cleanup(name)

    def _set_degraded(self, degraded: bool, reason: str | None) -> None:
        if degraded == self.world.degraded:
            return
        self.world.degraded = degraded
        if degraded:
            logger.warning("cluster unavailable (%s); entering degraded mode", reason or "unknown")
        else:
            logger.warning("cluster reachable again; leaving degraded mode")
            self._retry_cleanups()

    def _publish(self) -> WorldSnapshot:
        self.world.version += 1
        prices = economy.price_list(self.world, self._rules.economy)
        return world_rules.take_snapshot(self.world, prices)

    # --- Lifecycle ----------------------------------------------------------------

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run_loop(), name="cubeharvest-reconciler")
        self._ticker = loop.create_task(self._run_ticker(), name="cubeharvest-economy-tick")

    async def stop(self) -> None:
        self._stop_event.set()
        tasks = [task for task in (self._task, self._ticker) if task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None
        self._ticker = None
        await self.deployer.aclose()
        self._fail_waiting_submitters()

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            await self.run_once()

    async def _run_ticker(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._tick_interval)
                break
            except TimeoutError:
                pass
            self.post(EconomyTick())

    def _fail_waiting_submitters(self) -> None:
        while not self._inbox.empty():
            message = self._inbox.get_nowait()
            if isinstance(message, _Envelope) and not message.reply.done():
                message.reply.cancel()
