"""Cluster transport for CubeHarvest.

``kube`` holds the Kubernetes adapter and is imported explicitly by the
runtime so the rest of the package can be used without a kubeconfig.
"""

from cubeharvest.cluster.manifest import new_unit_name, render_manifest
from cubeharvest.cluster.retry import BackoffPolicy, call_with_retry

__all__ = [
    "BackoffPolicy",
    "call_with_retry",
    "new_unit_name",
    "render_manifest",
]
