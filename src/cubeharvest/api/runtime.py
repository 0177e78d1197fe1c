"""Runtime primitives backing the CubeHarvest HTTP API."""

from __future__ import annotations

import logging

from cubeharvest.cluster.kube import KubernetesClusterClient
from cubeharvest.cluster.manifest import renderer_from_settings
from cubeharvest.cluster.retry import BackoffPolicy
from cubeharvest.config import Settings, get_settings
from cubeharvest.domain.rules_config import RulesConfig, rules_from_settings
from cubeharvest.interfaces.cluster import IClusterClient
from cubeharvest.services.chaos import ChaosInjector
from cubeharvest.services.observer import StateObserver
from cubeharvest.services.reconciler import ReconciliationLoop

logger = logging.getLogger(__name__)

GAME_NAME = "CubeHarvest: Cluster Frontier"


class ApiState:
    """Aggregated services shared by the FastAPI layer."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        cluster: IClusterClient | None = None,
        rules: RulesConfig | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.rules = rules or rules_from_settings(self.settings)
        if cluster is None:
            cluster = KubernetesClusterClient.from_settings(self.settings)
        self.cluster = cluster
        self.loop = ReconciliationLoop(
            cluster,
            rules=self.rules,
            render=renderer_from_settings(self.settings),
            tick_interval_seconds=self.settings.tick_interval_seconds,
        )
        self.observer = StateObserver(
            cluster,
            self.loop.post,
            self.loop.snapshot,
            policy=BackoffPolicy.from_settings(self.settings),
        )
        self.chaos = ChaosInjector(self.loop.post, self.loop.snapshot, rules=self.rules.chaos)
        self._started = False

    def start(self) -> None:
        if self._started:
            return
        self.loop.start()
        self.observer.start()
        self.chaos.start()
        self._started = True
        logger.info(
            "%s started (namespace=%s, chaos session %d)",
            GAME_NAME,
            self.settings.kube_namespace,
            self.chaos.session,
        )

    async def shutdown(self) -> None:
        await self.chaos.stop()
        await self.observer.stop()
        await self.loop.stop()
        self._started = False


def build_state() -> ApiState:
    """Factory used by the API to initialize state."""

    return ApiState()
