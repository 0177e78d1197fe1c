"""Cluster Protocol Interfaces.

This module defines the contracts the orchestrator needs from the cluster
transport and from the manifest templating collaborator.
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

from cubeharvest.domain.enums import UnitKind
from cubeharvest.domain.messages import NodeEvent, PodEvent
from cubeharvest.domain.models import NodeInfo, PodInfo

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Listing(Generic[T]):
    """Result of a list call: the items plus the collection resource version."""

    items: tuple[T, ...]
    resource_version: int


class IClusterClient(Protocol):
    """Protocol defining the cluster transport.

    Implementations retry transient failures of single calls with capped
    exponential backoff and raise ``ClusterUnavailable`` once retries are
    exhausted.
    """

    async def list_nodes(self) -> Listing[NodeInfo]:
        """List every node in the cluster."""
        ...

    async def list_pods(self) -> Listing[PodInfo]:
        """List every pod in the game namespace."""
        ...

    def watch_nodes(self, resource_version: int) -> AsyncIterator[NodeEvent]:
        """Stream node changes newer than ``resource_version``.

        One call is one subscription.  The iterator ends when the server
        closes the watch and raises ``TransientClusterError`` on disconnect;
        resubscription is the caller's job.
        """
        ...

    def watch_pods(self, resource_version: int) -> AsyncIterator[PodEvent]:
        """Stream pod changes newer than ``resource_version``."""
        ...

    async def apply_pod(self, manifest: dict[str, Any]) -> None:
        """Create a pod.

        Raises:
            ApplyError: The cluster rejected the manifest
            ClusterUnavailable: Retries were exhausted
        """
        ...

    async def delete_pod(self, name: str) -> None:
        """Delete a pod by name.

        Raises:
            NotFound: The pod is already absent
            ClusterUnavailable: Retries were exhausted
        """
        ...


class IManifestRenderer(Protocol):
    """Turns a unit intent into a cluster-applyable pod manifest."""

    def __call__(
        self, kind: UnitKind, target_address: str | None, name: str
    ) -> dict[str, Any]: ...
