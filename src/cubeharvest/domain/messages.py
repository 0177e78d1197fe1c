"""Messages flowing into the reconciliation loop's inbox.

Cluster events come from the state observer, intents from the presentation
layer and the chaos injector, outcomes from the deployer's background tasks
and ticks from the economy clock.  All of them are immutable.
"""

from __future__ import annotations

from dataclasses import dataclass

from .enums import IntentOrigin, ResourceKind, UnitKind, UnitStatus, WatchEventType
from .models import NodeInfo, PodInfo, UnitID


@dataclass(frozen=True, slots=True)
class NodeEvent:
    type: WatchEventType
    node: NodeInfo
    synthetic: bool = False

    @property
    def seq(self) -> int:
        return self.node.resource_version

    @property
    def key(self) -> tuple[ResourceKind, str]:
        return (ResourceKind.NODE, self.node.name)


@dataclass(frozen=True, slots=True)
class PodEvent:
    type: WatchEventType
    pod: PodInfo
    synthetic: bool = False

    @property
    def seq(self) -> int:
        return self.pod.resource_version

    @property
    def key(self) -> tuple[ResourceKind, str]:
        return (ResourceKind.POD, self.pod.name)


ClusterEvent = NodeEvent | PodEvent


@dataclass(frozen=True, slots=True)
class ConnectivityChanged:
    available: bool
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class DeployIntent:
    kind: UnitKind
    target_address: str | None = None


@dataclass(frozen=True, slots=True)
class DeleteIntent:
    unit_id: str
    origin: IntentOrigin = IntentOrigin.PLAYER


Intent = DeployIntent | DeleteIntent


@dataclass(frozen=True, slots=True)
class ApplyOutcome:
    unit_id: UnitID
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class DeleteOutcome:
    unit_id: UnitID
    error: str | None = None
    not_found: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None or self.not_found


@dataclass(frozen=True, slots=True)
class EconomyTick:
    ticks: int = 1


@dataclass(frozen=True, slots=True)
class Ack:
    """Accepted-pending acknowledgement returned for an intent."""

    unit_id: UnitID
    status: UnitStatus
    skipped: bool = False
