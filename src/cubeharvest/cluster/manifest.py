"""Default pod manifest template for astro units.

The orchestrator only relies on the ``render(kind, target_address, name)``
contract; this module provides the stock implementation used by the runtime.
"""

from __future__ import annotations

from functools import partial
from typing import Any
from uuid import uuid4

from cubeharvest.config import Settings
from cubeharvest.domain.enums import UnitKind

UNIT_TYPE_LABEL = "cube-harvest.io/unit-type"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "cube-harvest"
TARGET_ENV = "TARGET"

# kwok fake nodes carry this taint
KWOK_TOLERATION = {
    "key": "kwok.x-k8s.io/node",
    "operator": "Exists",
    "effect": "NoSchedule",
}


def new_unit_name(kind: UnitKind) -> str:
    return f"{kind}-{uuid4().hex[:10]}"


def render_manifest(
    kind: UnitKind,
    target_address: str | None,
    name: str,
    *,
    image: str = "busybox:1.36",
    tolerate_kwok: bool = True,
) -> dict[str, Any]:
    """Render the pod manifest backing one astro unit."""

    env = [{"name": TARGET_ENV, "value": target_address or ""}]
    spec: dict[str, Any] = {
        "restartPolicy": "Always",
        "containers": [
            {
                "name": str(kind),
                "image": image,
                "command": ["sh", "-c", "while true; do sleep 3600; done"],
                "env": env,
            }
        ],
    }
    if tolerate_kwok:
        spec["tolerations"] = [dict(KWOK_TOLERATION)]
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": name,
            "labels": {UNIT_TYPE_LABEL: str(kind), MANAGED_BY_LABEL: MANAGED_BY},
        },
        "spec": spec,
    }


def renderer_from_settings(settings: Settings):
    """Bind the configured image into a ``render(kind, target, name)`` callable."""

    return partial(render_manifest, image=settings.unit_image)


def unit_kind_from_labels(labels: dict[str, str] | None) -> UnitKind | None:
    value = (labels or {}).get(UNIT_TYPE_LABEL)
    try:
        return UnitKind(value) if value is not None else None
    except ValueError:
        return None
