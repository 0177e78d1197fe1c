"""Service layer for CubeHarvest.

The services wire the pure domain rules to the cluster.  All of them talk to
the cluster through the ``IClusterClient`` protocol and to each other through
the reconciliation loop's inbox:

Architecture:
    - ReconciliationLoop: single writer; applies messages, publishes snapshots
    - UnitDeployer: deploy/delete intents to pod create/delete requests
    - StateObserver: list+watch with reconcile-by-diff and backoff
    - ChaosInjector: randomly scheduled deletes of running units

Testing Usage:
    from cubeharvest.services import ReconciliationLoop

    loop = ReconciliationLoop(fake_cluster)  # any IClusterClient
    ack = await loop.submit(DeployIntent(UnitKind.PROCESSOR))
"""

from cubeharvest.services.chaos import ChaosInjector
from cubeharvest.services.deployer import UnitDeployer, validate_address
from cubeharvest.services.observer import StateObserver, diff_nodes, diff_pods
from cubeharvest.services.reconciler import ReconciliationLoop

__all__ = [
    "ChaosInjector",
    "ReconciliationLoop",
    "StateObserver",
    "UnitDeployer",
    "diff_nodes",
    "diff_pods",
    "validate_address",
]
