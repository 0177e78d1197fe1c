"""Dataclasses describing the in-memory projection of the cluster.

Two families live here.  ``NodeInfo`` and ``PodInfo`` are what the cluster
adapter reports, already stripped down to the fields the game cares about.
``AstroNode``, ``AstroUnit`` and the credits ledger are the mutable world
state owned by the reconciliation loop; ``WorldSnapshot`` and its views are
the frozen copies handed to readers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import NewType

from .enums import GoneReason, LedgerEntryKind, ResourceKind, UnitKind, UnitStatus
from .errors import InsufficientCredits

# --- Strongly typed identifiers -------------------------------------------------

NodeID = NewType("NodeID", str)
UnitID = NewType("UnitID", str)


# --- Cluster records ------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NodeInfo:
    """A cluster node as reported by list/watch."""

    name: str
    resource_version: int
    capacity: float = 0.0
    label: str | None = None


@dataclass(frozen=True, slots=True)
class PodInfo:
    """A cluster pod as reported by list/watch."""

    name: str
    resource_version: int
    unit_kind: UnitKind | None
    namespace: str = "default"
    target_address: str | None = None
    node_name: str | None = None
    pod_ip: str | None = None
    phase: str = "Pending"
    ready: bool = False
    deleting: bool = False


# --- World state ----------------------------------------------------------------


@dataclass(slots=True)
class AstroNode:
    """Projection of a cluster node."""

    id: NodeID
    label: str
    capacity: float
    unit_ids: set[UnitID] = field(default_factory=set)


@dataclass(slots=True)
class AstroUnit:
    """Projection of a game pod."""

    id: UnitID
    kind: UnitKind
    status: UnitStatus = UnitStatus.PENDING
    node_id: NodeID | None = None
    orphaned: bool = False
    address: str | None = None
    target_address: str | None = None
    cost_paid: int = 0
    deadline: float | None = None
    observed: bool = False
    gone_reason: GoneReason | None = None
    status_before_delete: UnitStatus | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_live(self) -> bool:
        return self.status in (UnitStatus.PENDING, UnitStatus.RUNNING)


@dataclass(frozen=True, slots=True, order=True)
class Link:
    """A running miner paired with the running processor it targets."""

    miner_id: UnitID
    processor_id: UnitID


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """One movement on the credits ledger."""

    sequence: int
    kind: LedgerEntryKind
    amount: int
    balance_after: int
    reason: str
    unit_id: UnitID | None = None
    at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(slots=True)
class CreditsLedger:
    """Running balance plus the chronological log of movements."""

    balance: int = 0
    entries: list[LedgerEntry] = field(default_factory=list)

    def can_afford(self, amount: int) -> bool:
        return 0 <= amount <= self.balance

    def credit(
        self,
        amount: int,
        kind: LedgerEntryKind,
        reason: str,
        *,
        unit_id: UnitID | None = None,
    ) -> LedgerEntry | None:
        """Add ``amount`` credits; zero amounts are not logged."""

        if amount < 0:
            raise ValueError(f"credit amount must be non-negative, got {amount}")
        if amount == 0:
            return None
        self.balance += amount
        return self._record(kind, amount, reason, unit_id)

    def debit(
        self,
        amount: int,
        kind: LedgerEntryKind,
        reason: str,
        *,
        unit_id: UnitID | None = None,
    ) -> LedgerEntry | None:
        """Remove ``amount`` credits or raise ``InsufficientCredits``."""

        if amount < 0:
            raise ValueError(f"debit amount must be non-negative, got {amount}")
        if not self.can_afford(amount):
            raise InsufficientCredits(amount, self.balance)
        if amount == 0:
            return None
        self.balance -= amount
        return self._record(kind, -amount, reason, unit_id)

    def drain(self, amount: int, kind: LedgerEntryKind, reason: str) -> LedgerEntry | None:
        """Remove up to ``amount`` credits, stopping at zero."""

        return self.debit(min(max(amount, 0), self.balance), kind, reason)

    def _record(
        self, kind: LedgerEntryKind, amount: int, reason: str, unit_id: UnitID | None
    ) -> LedgerEntry:
        entry = LedgerEntry(
            sequence=len(self.entries) + 1,
            kind=kind,
            amount=amount,
            balance_after=self.balance,
            reason=reason,
            unit_id=unit_id,
        )
        self.entries.append(entry)
        return entry


@dataclass(slots=True)
class World:
    """Aggregate root mutated only by the reconciliation loop."""

    nodes: dict[NodeID, AstroNode] = field(default_factory=dict)
    units: dict[UnitID, AstroUnit] = field(default_factory=dict)
    links: frozenset[Link] = frozenset()
    ledger: CreditsLedger = field(default_factory=CreditsLedger)
    applied_seq: dict[tuple[ResourceKind, str], int] = field(default_factory=dict)
    retired: dict[UnitID, None] = field(default_factory=dict)
    degraded: bool = False
    tick: int = 0
    version: int = 0

    def live_units(self, kind: UnitKind | None = None) -> list[AstroUnit]:
        return [
            unit
            for unit in self.units.values()
            if unit.is_live and (kind is None or unit.kind == kind)
        ]


# --- Read-only snapshots --------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NodeView:
    id: NodeID
    label: str
    capacity: float
    unit_ids: tuple[UnitID, ...]


@dataclass(frozen=True, slots=True)
class UnitView:
    id: UnitID
    kind: UnitKind
    status: UnitStatus
    node_id: NodeID | None
    orphaned: bool
    address: str | None
    target_address: str | None
    gone_reason: GoneReason | None
    observed: bool = False


@dataclass(frozen=True, slots=True)
class WorldSnapshot:
    """Immutable view of the world published after every batch."""

    version: int
    tick: int
    nodes: tuple[NodeView, ...]
    units: tuple[UnitView, ...]
    links: tuple[Link, ...]
    balance: int
    prices: dict[UnitKind, int]
    degraded: bool
    ledger: tuple[LedgerEntry, ...] = ()

    def unit(self, unit_id: str) -> UnitView | None:
        for view in self.units:
            if view.id == unit_id:
                return view
        return None

    def running_units(self) -> list[UnitView]:
        return [view for view in self.units if view.status == UnitStatus.RUNNING]
