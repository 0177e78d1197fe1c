"""Cluster state observer.

Follows the node and pod collections with list+watch and posts every change
into the reconciliation loop's inbox.  Each (re)subscription starts with a
full list that is diffed against the latest snapshot, so changes missed while
disconnected still arrive as synthetic events.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from cubeharvest.cluster.retry import BackoffPolicy
from cubeharvest.domain.enums import ResourceKind, UnitStatus, WatchEventType
from cubeharvest.domain.errors import ClusterError, ClusterUnavailable
from cubeharvest.domain.messages import ConnectivityChanged, NodeEvent, PodEvent
from cubeharvest.domain.models import NodeInfo, PodInfo, WorldSnapshot
from cubeharvest.interfaces.cluster import IClusterClient, Listing

logger = logging.getLogger(__name__)


def diff_nodes(snapshot: WorldSnapshot, listing: Listing[NodeInfo]) -> list[NodeEvent]:
    """Events that bring the snapshot's nodes in line with ``listing``."""

    known = {view.id for view in snapshot.nodes}
    listed = {node.name for node in listing.items}
    events = [
        NodeEvent(
            type=WatchEventType.MODIFIED if node.name in known else WatchEventType.ADDED,
            node=node,
            synthetic=True,
        )
        for node in listing.items
    ]
    for name in sorted(known - listed):
        events.append(
            NodeEvent(
                type=WatchEventType.DELETED,
                node=NodeInfo(name=name, resource_version=listing.resource_version),
                synthetic=True,
            )
        )
    return events


def diff_pods(snapshot: WorldSnapshot, listing: Listing[PodInfo]) -> list[PodEvent]:
    """Events that bring the snapshot's units in line with ``listing``.

    Units the cluster never confirmed are left alone; their deploy deadline
    decides their fate.
    """

    known = {view.id for view in snapshot.units}
    listed = {pod.name for pod in listing.items}
    events = [
        PodEvent(
            type=WatchEventType.MODIFIED if pod.name in known else WatchEventType.ADDED,
            pod=pod,
            synthetic=True,
        )
        for pod in listing.items
    ]
    for view in snapshot.units:
        if view.id in listed or not view.observed or view.status == UnitStatus.GONE:
            continue
        events.append(
            PodEvent(
                type=WatchEventType.DELETED,
                pod=PodInfo(
                    name=view.id,
                    resource_version=listing.resource_version,
                    unit_kind=view.kind,
                ),
                synthetic=True,
            )
        )
    return events


class StateObserver:
    """Feeds cluster changes into the loop and reports connectivity."""

    def __init__(
        self,
        cluster: IClusterClient,
        post: Callable[[object], None],
        snapshot: Callable[[], WorldSnapshot],
        *,
        policy: BackoffPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._cluster = cluster
        self._post = post
        self._snapshot = snapshot
        self._policy = policy or BackoffPolicy()
        self._sleep = sleep
        self._unavailable: set[ResourceKind] = set()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def available(self) -> bool:
        return not self._unavailable

    async def resync(self, resource: ResourceKind) -> int:
        """List ``resource``, post the diff and return the list resource version."""

        snapshot = self._snapshot()
        if resource == ResourceKind.NODE:
            node_listing = await self._cluster.list_nodes()
            events: list[NodeEvent | PodEvent] = list(diff_nodes(snapshot, node_listing))
            resource_version = node_listing.resource_version
        else:
            pod_listing = await self._cluster.list_pods()
            events = list(diff_pods(snapshot, pod_listing))
            resource_version = pod_listing.resource_version
        for event in events:
            self._post(event)
        logger.debug("resynced %s: %d events at rv %d", resource, len(events), resource_version)
        return resource_version

    def _watch(self, resource: ResourceKind, resource_version: int) -> AsyncIterator[object]:
        if resource == ResourceKind.NODE:
            return self._cluster.watch_nodes(resource_version)
        return self._cluster.watch_pods(resource_version)

    async def follow(self, resource: ResourceKind) -> None:
        """List, watch and resubscribe ``resource`` until cancelled."""

        failures = 0
        while True:
            try:
                resource_version = await self.resync(resource)
                self._mark(resource, available=True)
                failures = 0
                async for event in self._watch(resource, resource_version):
                    self._post(event)
                logger.debug("%s watch closed by the server; resubscribing", resource)
            except ClusterError as exc:
                failures += 1
                if isinstance(exc, ClusterUnavailable) or failures >= self._policy.attempts:
                    self._mark(resource, available=False, reason=str(exc))
                delay = self._policy.delay(failures - 1)
                logger.warning(
                    "%s watch failed (%s); resubscribing in %.2fs", resource, exc, delay
                )
                await self._sleep(delay)

    def _mark(self, resource: ResourceKind, *, available: bool, reason: str | None = None) -> None:
        was_available = self.available
        if available:
            self._unavailable.discard(resource)
        else:
            self._unavailable.add(resource)
        if self.available != was_available:
            self._post(ConnectivityChanged(available=self.available, reason=reason))

    def start(self) -> None:
        if self._tasks:
            return
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self.follow(resource), name=f"cubeharvest-observe-{resource}")
            for resource in (ResourceKind.NODE, ResourceKind.POD)
        ]

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
