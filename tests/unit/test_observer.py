"""Tests for the state observer: reconcile-by-diff, watch resubscription and degraded mode."""

from __future__ import annotations

import asyncio

import pytest
from fakes import FakeCluster

from cubeharvest.cluster.retry import BackoffPolicy
from cubeharvest.domain.enums import ResourceKind, UnitKind, UnitStatus, WatchEventType
from cubeharvest.domain.messages import ConnectivityChanged, NodeEvent, PodEvent
from cubeharvest.domain.models import (
    NodeID,
    NodeInfo,
    NodeView,
    PodInfo,
    UnitID,
    UnitView,
    WorldSnapshot,
)
from cubeharvest.interfaces.cluster import Listing
from cubeharvest.services.observer import StateObserver, diff_nodes, diff_pods


def _snapshot(nodes=(), units=()) -> WorldSnapshot:
    return WorldSnapshot(
        version=1,
        tick=0,
        nodes=tuple(nodes),
        units=tuple(units),
        links=(),
        balance=0,
        prices={},
        degraded=False,
    )


def _unit_view(name: str, status: UnitStatus, *, observed: bool) -> UnitView:
    return UnitView(
        id=UnitID(name),
        kind=UnitKind.MINER,
        status=status,
        node_id=None,
        orphaned=False,
        address=None,
        target_address=None,
        gone_reason=None,
        observed=observed,
    )


async def _no_sleep(seconds: float) -> None:
    await asyncio.sleep(0)


async def _settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestDiff:
    def test_nodes_missing_from_listing_are_removed(self):
        snapshot = _snapshot(
            nodes=[NodeView(id=NodeID("node-a"), label="node-a", capacity=1.0, unit_ids=())]
        )
        listing = Listing(items=(NodeInfo(name="node-b", resource_version=5),), resource_version=9)

        events = diff_nodes(snapshot, listing)

        assert [(event.type, event.node.name) for event in events] == [
            (WatchEventType.ADDED, "node-b"),
            (WatchEventType.DELETED, "node-a"),
        ]
        assert events[1].seq == 9
        assert all(event.synthetic for event in events)

    def test_known_pods_are_modified(self):
        snapshot = _snapshot(units=[_unit_view("miner-1", UnitStatus.RUNNING, observed=True)])
        listing = Listing(
            items=(PodInfo(name="miner-1", resource_version=4, unit_kind=UnitKind.MINER),),
            resource_version=6,
        )

        events = diff_pods(snapshot, listing)

        assert [(event.type, event.pod.name) for event in events] == [
            (WatchEventType.MODIFIED, "miner-1")
        ]

    def test_vanished_observed_units_are_removed(self):
        snapshot = _snapshot(
            units=[
                _unit_view("miner-1", UnitStatus.RUNNING, observed=True),
                _unit_view("miner-2", UnitStatus.PENDING, observed=False),
                _unit_view("miner-3", UnitStatus.GONE, observed=True),
            ]
        )

        events = diff_pods(snapshot, Listing(items=(), resource_version=12))

        assert [(event.type, event.pod.name, event.seq) for event in events] == [
            (WatchEventType.DELETED, "miner-1", 12)
        ]


class TestStateObserver:
    @pytest.mark.asyncio
    async def test_initial_list_then_watch(self):
        cluster = FakeCluster()
        cluster.add_node("node-a")
        posted: list[object] = []
        observer = StateObserver(cluster, posted.append, _snapshot, sleep=_no_sleep)

        observer.start()
        try:
            await _settle()
            assert cluster.watcher_count(ResourceKind.NODE) == 1
            assert cluster.watcher_count(ResourceKind.POD) == 1
            cluster.add_node("node-b")
            await _settle()
        finally:
            await observer.stop()

        node_events = [event for event in posted if isinstance(event, NodeEvent)]
        assert [event.node.name for event in node_events] == ["node-a", "node-b"]
        assert node_events[0].synthetic
        assert not node_events[1].synthetic

    @pytest.mark.asyncio
    async def test_disconnect_triggers_resync(self):
        cluster = FakeCluster()
        posted: list[object] = []
        observer = StateObserver(cluster, posted.append, _snapshot, sleep=_no_sleep)

        observer.start()
        try:
            await _settle()
            lists_before = cluster.list_calls
            cluster.disconnect()
            await _settle()
            assert cluster.list_calls == lists_before + 2
            assert cluster.watcher_count(ResourceKind.POD) == 1
        finally:
            await observer.stop()

        assert not any(isinstance(event, ConnectivityChanged) for event in posted)

    @pytest.mark.asyncio
    async def test_unreachable_cluster_reports_degraded_and_recovery(self):
        cluster = FakeCluster()
        cluster.unavailable = True
        posted: list[object] = []
        observer = StateObserver(
            cluster,
            posted.append,
            _snapshot,
            policy=BackoffPolicy(attempts=2, initial_seconds=0.01, max_seconds=0.01),
            sleep=_no_sleep,
        )

        observer.start()
        try:
            await _settle()
            assert not observer.available
            cluster.unavailable = False
            await _settle()
            assert observer.available
        finally:
            await observer.stop()

        changes = [event for event in posted if isinstance(event, ConnectivityChanged)]
        assert [change.available for change in changes] == [False, True]

    @pytest.mark.asyncio
    async def test_pod_removed_while_disconnected_is_synthesized(self):
        cluster = FakeCluster()
        posted: list[object] = []
        running = _snapshot(units=[_unit_view("miner-1", UnitStatus.RUNNING, observed=True)])
        observer = StateObserver(cluster, posted.append, lambda: running, sleep=_no_sleep)

        await observer.resync(ResourceKind.POD)

        deletions = [
            event
            for event in posted
            if isinstance(event, PodEvent) and event.type == WatchEventType.DELETED
        ]
        assert [event.pod.name for event in deletions] == ["miner-1"]
