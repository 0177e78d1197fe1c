"""Protocol-based interfaces for the CubeHarvest orchestrator.

This module exports the contracts the services depend on, so the real
Kubernetes adapter and in-memory fakes are interchangeable.
"""

from cubeharvest.interfaces.cluster import IClusterClient, IManifestRenderer, Listing

__all__ = [
    "IClusterClient",
    "IManifestRenderer",
    "Listing",
]
