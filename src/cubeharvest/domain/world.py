"""Mutation rules for the world projection.

Every function here operates on a :class:`World` in place and leaves it
satisfying :func:`check_invariants` when it returns, so a batch of events can
be applied one at a time without any batch-level rollback.  Only the
reconciliation loop calls the mutating functions.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .enums import (
    ALLOWED_TRANSITIONS,
    REFUNDABLE_REASONS,
    GoneReason,
    LedgerEntryKind,
    ResourceKind,
    UnitKind,
    UnitStatus,
    WatchEventType,
)
from .messages import NodeEvent, PodEvent
from .models import (
    AstroNode,
    AstroUnit,
    NodeID,
    NodeView,
    UnitID,
    UnitView,
    World,
    WorldSnapshot,
)

logger = logging.getLogger(__name__)

EXITED_PHASES = frozenset({"Succeeded", "Failed"})
RETIRED_LIMIT = 1024


class IllegalTransition(ValueError):
    """Raised when a unit is asked to move along an edge the lifecycle forbids."""


# --- Sequence bookkeeping -------------------------------------------------------


def is_stale(world: World, key: tuple[ResourceKind, str], seq: int) -> bool:
    """Return True when ``seq`` is not newer than the last applied one for ``key``."""

    last = world.applied_seq.get(key)
    return last is not None and seq <= last


# --- Unit lifecycle -------------------------------------------------------------


def transition(
    world: World,
    unit: AstroUnit,
    status: UnitStatus,
    *,
    reason: GoneReason | None = None,
) -> None:
    """Move ``unit`` to ``status`` and keep derived state in step."""

    if status == unit.status:
        return
    if status not in ALLOWED_TRANSITIONS[unit.status]:
        raise IllegalTransition(f"unit {unit.id} cannot move from {unit.status} to {status}")

    previous = unit.status
    unit.status = status
    if previous == UnitStatus.RUNNING:
        drop_links_for(world, unit.id)
    if status == UnitStatus.GONE:
        unit.gone_reason = reason or GoneReason.LOST
        unit.deadline = None
        _detach(world, unit)
    logger.info("unit %s: %s -> %s (%s)", unit.id, previous, status, reason or "-")


def mark_gone(world: World, unit: AstroUnit, reason: GoneReason) -> int:
    """Move ``unit`` to GONE, refunding it when the create never happened.

    Returns the refunded amount.
    """

    transition(world, unit, UnitStatus.GONE, reason=reason)
    if reason in REFUNDABLE_REASONS:
        return refund(world, unit)
    return 0


def refund(world: World, unit: AstroUnit) -> int:
    """Give back what was paid for ``unit``; only ever pays out once."""

    amount = unit.cost_paid
    if amount <= 0:
        return 0
    unit.cost_paid = 0
    world.ledger.credit(amount, LedgerEntryKind.REFUND, f"refund {unit.gone_reason}", unit_id=unit.id)
    logger.info("refunded %d credits for unit %s", amount, unit.id)
    return amount


def restore_after_failed_delete(world: World, unit: AstroUnit) -> bool:
    """Undo the optimistic TERMINATING mark when the delete request failed.

    This is the compensating step for a delete that never reached the
    cluster, not a lifecycle transition, so it bypasses the transition table.
    """

    previous = unit.status_before_delete
    if unit.status != UnitStatus.TERMINATING or previous not in (
        UnitStatus.PENDING,
        UnitStatus.RUNNING,
    ):
        return False
    unit.status = previous
    unit.status_before_delete = None
    logger.warning("delete of unit %s failed; back to %s", unit.id, previous)
    return True


def register_pending(world: World, unit: AstroUnit) -> None:
    """Record an optimistic unit before the cluster has confirmed it."""

    existing = world.units.get(unit.id)
    if existing is not None and existing.is_live:
        raise ValueError(f"unit {unit.id} is already live")
    unit.status = UnitStatus.PENDING
    world.units[unit.id] = unit


def drop_links_for(world: World, unit_id: UnitID) -> None:
    if any(unit_id in (link.miner_id, link.processor_id) for link in world.links):
        world.links = frozenset(
            link for link in world.links if unit_id not in (link.miner_id, link.processor_id)
        )


def _attach(world: World, unit: AstroUnit, node_name: str) -> None:
    node_id = NodeID(node_name)
    if unit.node_id is not None and unit.node_id != node_id:
        _detach(world, unit)
    unit.node_id = node_id
    node = world.nodes.get(node_id)
    if node is None:
        unit.orphaned = True
        return
    unit.orphaned = False
    node.unit_ids.add(unit.id)


def _detach(world: World, unit: AstroUnit) -> None:
    if unit.node_id is None:
        return
    node = world.nodes.get(unit.node_id)
    if node is not None:
        node.unit_ids.discard(unit.id)


# --- Cluster events -------------------------------------------------------------


def apply_node_event(world: World, event: NodeEvent) -> bool:
    """Apply a node add/modify/remove.  Returns False for stale events."""

    if is_stale(world, event.key, event.seq):
        logger.debug("dropping stale node event %s seq=%d", event.node.name, event.seq)
        return False
    world.applied_seq[event.key] = event.seq

    node_id = NodeID(event.node.name)
    if event.type == WatchEventType.DELETED:
        if world.nodes.pop(node_id, None) is not None:
            logger.info("node %s left the cluster", node_id)
        for unit in world.units.values():
            if unit.node_id == node_id:
                unit.orphaned = True
        return True

    node = world.nodes.get(node_id)
    if node is None:
        node = AstroNode(
            id=node_id,
            label=event.node.label or event.node.name,
            capacity=event.node.capacity,
        )
        world.nodes[node_id] = node
        logger.info("node %s joined the cluster", node_id)
        for unit in world.units.values():
            if unit.node_id != node_id:
                continue
            unit.orphaned = False
            if unit.status != UnitStatus.GONE:
                node.unit_ids.add(unit.id)
    else:
        node.label = event.node.label or event.node.name
        node.capacity = event.node.capacity
    return True


def needs_cleanup(world: World, event: PodEvent) -> bool:
    """True when a pod exists for a unit the world already considers gone."""

    if event.type == WatchEventType.DELETED or event.pod.deleting:
        return False
    unit_id = UnitID(event.pod.name)
    unit = world.units.get(unit_id)
    if unit is None:
        return unit_id in world.retired
    return unit.status == UnitStatus.GONE


def apply_pod_event(world: World, event: PodEvent) -> bool:
    """Apply a pod add/modify/remove.  Returns False when nothing was applied."""

    pod = event.pod
    unit = world.units.get(UnitID(pod.name))
    if unit is None and pod.unit_kind is None:
        return False
    if is_stale(world, event.key, event.seq):
        logger.debug("dropping stale pod event %s seq=%d", pod.name, event.seq)
        return False
    world.applied_seq[event.key] = event.seq

    if event.type == WatchEventType.DELETED:
        if unit is None or unit.status == UnitStatus.GONE:
            return True
        reason = GoneReason.DELETED if unit.status == UnitStatus.TERMINATING else GoneReason.LOST
        mark_gone(world, unit, reason)
        return True

    if unit is None and UnitID(pod.name) in world.retired:
        return True
    if unit is None:
        unit = AstroUnit(
            id=UnitID(pod.name),
            kind=pod.unit_kind or UnitKind.MINER,
            target_address=pod.target_address,
        )
        world.units[unit.id] = unit
        logger.info("adopted existing %s %s", unit.kind, unit.id)
    if unit.status == UnitStatus.GONE:
        return True

    unit.observed = True
    unit.deadline = None
    if unit.address != pod.pod_ip:
        unit.address = pod.pod_ip
        drop_links_for(world, unit.id)
    if pod.node_name:
        _attach(world, unit, pod.node_name)

    if pod.phase in EXITED_PHASES:
        mark_gone(world, unit, GoneReason.EXITED)
    elif pod.deleting:
        transition(world, unit, UnitStatus.TERMINATING)
    elif pod.phase == "Running" and pod.ready and unit.status == UnitStatus.PENDING:
        transition(world, unit, UnitStatus.RUNNING)
    return True


# --- Housekeeping ---------------------------------------------------------------


def expire_pending(world: World, now: float) -> list[AstroUnit]:
    """Demote never-observed units whose deploy deadline has passed."""

    expired: list[AstroUnit] = []
    for unit in list(world.units.values()):
        if unit.observed or unit.deadline is None or unit.status == UnitStatus.GONE:
            continue
        if now >= unit.deadline:
            mark_gone(world, unit, GoneReason.CREATE_TIMEOUT)
            expired.append(unit)
    return expired


def prune_gone(world: World, retention: int) -> None:
    """Keep only the ``retention`` most recent gone units.

    Pruned names are remembered in ``world.retired`` so a pod that turns up
    for one later is cleaned up instead of adopted.
    """

    gone = [unit for unit in world.units.values() if unit.status == UnitStatus.GONE]
    excess = len(gone) - retention
    if excess <= 0:
        return
    gone.sort(key=lambda unit: unit.created_at)
    for unit in gone[:excess]:
        del world.units[unit.id]
        world.applied_seq.pop((ResourceKind.POD, unit.id), None)
        world.retired[unit.id] = None
    while len(world.retired) > RETIRED_LIMIT:
        del world.retired[next(iter(world.retired))]


def take_snapshot(world: World, prices: dict[UnitKind, int]) -> WorldSnapshot:
    """Copy the world into an immutable snapshot."""

    return WorldSnapshot(
        version=world.version,
        tick=world.tick,
        nodes=tuple(
            NodeView(
                id=node.id,
                label=node.label,
                capacity=node.capacity,
                unit_ids=tuple(sorted(node.unit_ids)),
            )
            for node in sorted(world.nodes.values(), key=lambda n: n.id)
        ),
        units=tuple(
            UnitView(
                id=unit.id,
                kind=unit.kind,
                status=unit.status,
                node_id=unit.node_id,
                orphaned=unit.orphaned,
                address=unit.address,
                target_address=unit.target_address,
                gone_reason=unit.gone_reason,
                observed=unit.observed,
            )
            for unit in sorted(world.units.values(), key=lambda u: (u.created_at, u.id))
        ),
        links=tuple(sorted(world.links)),
        balance=world.ledger.balance,
        prices=dict(prices),
        degraded=world.degraded,
        ledger=tuple(world.ledger.entries),
    )


def check_invariants(world: World) -> list[str]:
    """Return a description of every violated world invariant."""

    problems: list[str] = []
    for unit_id, unit in world.units.items():
        if unit.id != unit_id:
            problems.append(f"unit stored under {unit_id} has id {unit.id}")
        if unit.node_id is not None and unit.node_id not in world.nodes and not unit.orphaned:
            problems.append(f"unit {unit.id} references missing node {unit.node_id}")

    for node in world.nodes.values():
        for unit_id in node.unit_ids:
            unit = world.units.get(unit_id)
            if unit is None or unit.node_id != node.id or unit.status == UnitStatus.GONE:
                problems.append(f"node {node.id} lists unit {unit_id} it does not host")

    for link in world.links:
        problems.extend(_link_problems(world, link.miner_id, UnitKind.MINER))
        problems.extend(_link_problems(world, link.processor_id, UnitKind.PROCESSOR))

    if world.ledger.balance < 0:
        problems.append(f"credit balance is negative ({world.ledger.balance})")
    return problems


def _link_problems(world: World, unit_id: UnitID, kind: UnitKind) -> Iterable[str]:
    unit = world.units.get(unit_id)
    if unit is None:
        yield f"link references unknown unit {unit_id}"
    elif unit.status != UnitStatus.RUNNING:
        yield f"link references {unit.status} unit {unit_id}"
    elif unit.kind != kind:
        yield f"link expects {kind} but {unit_id} is a {unit.kind}"
