"""Enumerations used across the CubeHarvest domain."""

from __future__ import annotations

from enum import StrEnum


class UnitKind(StrEnum):
    """Game role carried by an astro unit."""

    MINER = "miner"
    PROCESSOR = "processor"


class UnitStatus(StrEnum):
    """Unit lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    TERMINATING = "terminating"
    GONE = "gone"


class GoneReason(StrEnum):
    """Why a unit stopped existing."""

    CREATE_FAILED = "create-failed"
    CREATE_TIMEOUT = "create-timeout"
    DELETED = "deleted"
    LOST = "lost"
    EXITED = "exited"


class WatchEventType(StrEnum):
    """Change types reported by cluster watches."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class ResourceKind(StrEnum):
    """Cluster resources the orchestrator follows."""

    NODE = "node"
    POD = "pod"


class LedgerEntryKind(StrEnum):
    """Categories of credit ledger movements."""

    GRANT = "grant"
    SPEND = "spend"
    REFUND = "refund"
    ACCRUAL = "accrual"
    UPKEEP = "upkeep"


class IntentOrigin(StrEnum):
    """Who asked for a unit to be deleted."""

    PLAYER = "player"
    CHAOS = "chaos"


# Statuses a unit may move to from each state. Nothing leaves GONE.
ALLOWED_TRANSITIONS: dict[UnitStatus, frozenset[UnitStatus]] = {
    UnitStatus.PENDING: frozenset(
        {UnitStatus.RUNNING, UnitStatus.TERMINATING, UnitStatus.GONE}
    ),
    UnitStatus.RUNNING: frozenset({UnitStatus.TERMINATING, UnitStatus.GONE}),
    UnitStatus.TERMINATING: frozenset({UnitStatus.GONE}),
    UnitStatus.GONE: frozenset(),
}

LIVE_STATUSES = frozenset({UnitStatus.PENDING, UnitStatus.RUNNING})
REFUNDABLE_REASONS = frozenset({GoneReason.CREATE_FAILED, GoneReason.CREATE_TIMEOUT})
