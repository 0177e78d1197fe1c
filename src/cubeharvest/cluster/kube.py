"""Cluster client backed by the official ``kubernetes`` Python package.

This module is the only place that imports ``kubernetes``.  The package's
API is blocking, so every call runs in a worker thread via
``asyncio.to_thread``; watch streams pull one item per thread hop.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError, ReadTimeoutError

from cubeharvest.config import Settings
from cubeharvest.domain.enums import WatchEventType
from cubeharvest.domain.errors import (
    ApplyError,
    ClusterError,
    NotFound,
    TransientClusterError,
)
from cubeharvest.domain.messages import NodeEvent, PodEvent
from cubeharvest.domain.models import NodeInfo, PodInfo
from cubeharvest.interfaces.cluster import Listing

from .manifest import TARGET_ENV, UNIT_TYPE_LABEL, unit_kind_from_labels
from .retry import BackoffPolicy, call_with_retry

logger = logging.getLogger(__name__)

REJECTED_STATUSES = frozenset({400, 403, 409, 422})
GONE_STATUS = 410


def load_kube_config(context: str | None = None) -> None:
    """Load in-cluster credentials, falling back to the local kubeconfig."""

    try:
        config.load_incluster_config()
        logger.info("loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config(context=context)
        logger.info("loaded kubeconfig (context=%s)", context or "current")


class KubernetesClusterClient:
    """``IClusterClient`` implementation talking to a real API server."""

    def __init__(
        self,
        core_api: client.CoreV1Api,
        *,
        namespace: str = "default",
        policy: BackoffPolicy | None = None,
        watch_timeout_seconds: int = 300,
        read_timeout_seconds: float = 10.0,
    ) -> None:
        self._core = core_api
        self._namespace = namespace
        self._policy = policy or BackoffPolicy()
        self._watch_timeout = watch_timeout_seconds
        self._read_timeout = read_timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> KubernetesClusterClient:
        load_kube_config(settings.kube_context)
        return cls(
            client.CoreV1Api(),
            namespace=settings.kube_namespace,
            policy=BackoffPolicy.from_settings(settings),
            watch_timeout_seconds=settings.watch_timeout_seconds,
            read_timeout_seconds=settings.watch_read_timeout_seconds,
        )

    async def list_nodes(self) -> Listing[NodeInfo]:
        result = await self._call("list nodes", self._core.list_node)
        return Listing(
            items=tuple(node_info(item) for item in result.items),
            resource_version=parse_resource_version(result.metadata.resource_version),
        )

    async def list_pods(self) -> Listing[PodInfo]:
        result = await self._call(
            "list pods",
            self._core.list_namespaced_pod,
            self._namespace,
            label_selector=UNIT_TYPE_LABEL,
        )
        return Listing(
            items=tuple(pod_info(item) for item in result.items),
            resource_version=parse_resource_version(result.metadata.resource_version),
        )

    async def watch_nodes(self, resource_version: int) -> AsyncIterator[NodeEvent]:
        async for event_type, obj in self._watch(self._core.list_node, resource_version):
            yield NodeEvent(type=event_type, node=node_info(obj))

    async def watch_pods(self, resource_version: int) -> AsyncIterator[PodEvent]:
        async for event_type, obj in self._watch(
            self._core.list_namespaced_pod,
            resource_version,
            self._namespace,
            label_selector=UNIT_TYPE_LABEL,
        ):
            yield PodEvent(type=event_type, pod=pod_info(obj))

    async def apply_pod(self, manifest: dict[str, Any]) -> None:
        name = manifest.get("metadata", {}).get("name", "?")
        await self._call(
            f"create pod {name}",
            self._core.create_namespaced_pod,
            self._namespace,
            manifest,
        )

    async def delete_pod(self, name: str) -> None:
        await self._call(
            f"delete pod {name}",
            self._core.delete_namespaced_pod,
            name,
            self._namespace,
        )

    async def _call(self, description: str, func: Callable[..., Any], *args: Any, **kwargs: Any):
        async def attempt() -> Any:
            try:
                return await asyncio.to_thread(func, *args, **kwargs)
            except ApiException as exc:
                raise translate_api_exception(exc, description) from exc
            except (HTTPError, OSError) as exc:
                raise TransientClusterError(f"{description}: {exc}") from exc

        return await call_with_retry(attempt, self._policy, description=description)

    async def _watch(
        self,
        list_func: Callable[..., Any],
        resource_version: int,
        *args: Any,
        **kwargs: Any,
    ) -> AsyncIterator[tuple[WatchEventType, Any]]:
        """Yield ``(type, object)`` pairs until the server closes the stream.

        Socket reads time out after ``read_timeout_seconds`` so a cancelled
        watch releases its worker thread promptly.  A stream that stays quiet
        that long is reopened from the last resource version seen.
        """

        version = str(resource_version)
        while True:
            watcher = watch.Watch()
            stream = watcher.stream(
                list_func,
                *args,
                resource_version=version,
                timeout_seconds=self._watch_timeout,
                _request_timeout=(self._read_timeout, self._read_timeout),
                **kwargs,
            )
            try:
                while True:
                    try:
                        item = await asyncio.to_thread(next, stream, None)
                    except (ReadTimeoutError, TimeoutError):
                        logger.debug("watch idle; reopening at resource version %s", version)
                        break
                    except ApiException as exc:
                        raise translate_api_exception(exc, "watch") from exc
                    except (HTTPError, OSError) as exc:
                        raise TransientClusterError(f"watch dropped: {exc}") from exc
                    if item is None:
                        return
                    event_type = item.get("type")
                    if event_type == "ERROR":
                        raise TransientClusterError(f"watch error: {item.get('raw_object')}")
                    if event_type not in WatchEventType.__members__:
                        continue
                    obj = item["object"]
                    version = getattr(obj.metadata, "resource_version", None) or version
                    yield WatchEventType(event_type), obj
            finally:
                watcher.stop()


def translate_api_exception(exc: ApiException, description: str) -> ClusterError:
    """Map an API server error onto the orchestrator's error taxonomy."""

    status = exc.status or 0
    message = f"{description}: {status} {exc.reason}"
    if status == 404:
        return NotFound(message)
    if status == GONE_STATUS:
        # expired resource version; a fresh list is needed
        return TransientClusterError(message)
    if status in REJECTED_STATUSES:
        return ApplyError(message)
    return TransientClusterError(message)


def parse_resource_version(value: str | None) -> int:
    try:
        return int(value or 0)
    except ValueError:
        logger.warning("non-numeric resource version %r", value)
        return 0


def parse_cpu(cpu: str | None) -> float:
    """Parse a CPU quantity to cores.

    Examples: "500m" -> 0.5, "4" -> 4.0
    """
    if not cpu:
        return 0.0
    cpu = str(cpu).strip()
    if cpu.endswith("n"):
        return float(cpu[:-1]) / 1_000_000_000
    if cpu.endswith("u"):
        return float(cpu[:-1]) / 1_000_000
    if cpu.endswith("m"):
        return float(cpu[:-1]) / 1_000
    return float(cpu)


def node_info(node: Any) -> NodeInfo:
    meta = node.metadata
    allocatable = (node.status.allocatable if node.status else None) or {}
    labels = meta.labels or {}
    return NodeInfo(
        name=meta.name,
        resource_version=parse_resource_version(meta.resource_version),
        capacity=parse_cpu(allocatable.get("cpu")),
        label=labels.get("kubernetes.io/hostname", meta.name),
    )


def pod_info(pod: Any) -> PodInfo:
    meta = pod.metadata
    spec = pod.spec
    status = pod.status

    target: str | None = None
    for container in (spec.containers if spec else None) or []:
        for env in container.env or []:
            if env.name == TARGET_ENV:
                target = env.value or None

    conditions = (status.conditions if status else None) or []
    ready = any(c.type == "Ready" and c.status == "True" for c in conditions)
    return PodInfo(
        name=meta.name,
        resource_version=parse_resource_version(meta.resource_version),
        unit_kind=unit_kind_from_labels(meta.labels),
        namespace=meta.namespace or "default",
        target_address=target,
        node_name=spec.node_name if spec else None,
        pod_ip=status.pod_ip if status else None,
        phase=(status.phase if status else None) or "Pending",
        ready=ready,
        deleting=meta.deletion_timestamp is not None,
    )
