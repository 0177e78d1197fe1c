"""Error taxonomy shared by the orchestrator components."""

from __future__ import annotations


class CubeHarvestError(Exception):
    """Base class for every error raised by the orchestrator."""


class ValidationError(CubeHarvestError):
    """An intent was rejected before any cluster call was issued."""


class InsufficientCredits(ValidationError):
    def __init__(self, cost: int, balance: int) -> None:
        super().__init__(f"unit costs {cost} credits but only {balance} are available")
        self.cost = cost
        self.balance = balance


class InvalidAddress(ValidationError):
    def __init__(self, address: str | None) -> None:
        super().__init__(f"{address!r} is not a valid network address")
        self.address = address


class UnknownUnit(ValidationError):
    def __init__(self, unit_id: str) -> None:
        super().__init__(f"unit {unit_id!r} does not exist or is no longer live")
        self.unit_id = unit_id


class ClusterError(CubeHarvestError):
    """Base class for failures talking to the cluster."""


class TransientClusterError(ClusterError):
    """A single call failed in a way that is worth retrying."""


class ClusterUnavailable(ClusterError):
    """Retries are exhausted; the orchestrator runs degraded."""


class ApplyError(ClusterError):
    """The cluster rejected a pod manifest."""


class NotFound(ClusterError):
    """The addressed resource does not exist."""
