# src/kubedrain/collectors/pod_collector.py
"""
Lists pods from the Kubernetes API: the live pods bound to a node being
drained, and the leftover evicted pods across the cluster.
"""

import logging
from typing import List

from kubedrain.collectors.base_collector import BaseCollector
from kubedrain.core.k8s_client import get_core_v1_api
from kubedrain.models.pod import OwnerReference, PodCondition, PodInfo

logger = logging.getLogger(__name__)

TERMINAL_PHASE_SELECTOR = "status.phase!=Succeeded,status.phase!=Failed"


def node_pod_field_selector(node_name: str) -> str:
    """Pods bound to the node that are not already in a terminal phase."""
    return f"spec.nodeName={node_name},{TERMINAL_PHASE_SELECTOR}"


def to_pod_info(pod) -> PodInfo:
    metadata = pod.metadata
    spec = pod.spec
    status = pod.status

    owners = [OwnerReference(kind=ref.kind, name=ref.name) for ref in (metadata.owner_references or [])]
    conditions = [
        PodCondition(type=cond.type, status=cond.status, reason=cond.reason)
        for cond in ((status.conditions if status else None) or [])
    ]

    return PodInfo(
        name=metadata.name,
        namespace=metadata.namespace,
        node_name=spec.node_name if spec else None,
        phase=status.phase if status else None,
        status_reason=status.reason if status else None,
        deleting=metadata.deletion_timestamp is not None,
        owner_references=owners,
        annotations=dict(metadata.annotations or {}),
        conditions=conditions,
    )


class PodCollector(BaseCollector):
    """
    Connects to the K8s API to find pods. Listing errors are raised to the
    caller, which decides whether they are retryable.
    """

    def __init__(self, api=None):
        self._api = api

    async def _ensure_client(self):
        """Lazily initialize the Kubernetes Client."""
        if self._api:
            return self._api

        self._api = await get_core_v1_api()
        if self._api:
            logger.debug("PodCollector initialized with centralized config.")
        else:
            logger.warning("PodCollector could not initialize Kubernetes client.")

        return self._api

    async def collect(self, node_name: str) -> List[PodInfo]:
        return await self.list_pods_on_node(node_name)

    async def list_pods_on_node(self, node_name: str) -> List[PodInfo]:
        """
        Fresh listing of the non-terminal pods bound to a node.
        """
        api = await self._ensure_client()
        pod_list = await api.list_pod_for_all_namespaces(
            field_selector=node_pod_field_selector(node_name),
            watch=False,
        )
        pods = [to_pod_info(pod) for pod in pod_list.items or []]
        logger.debug(f"Listed {len(pods)} live pod(s) on node {node_name}.")
        return pods

    async def list_evicted_pods(self) -> List[PodInfo]:
        """
        Pods left behind in phase Failed with reason 'Evicted'.
        """
        api = await self._ensure_client()
        pod_list = await api.list_pod_for_all_namespaces(field_selector="status.phase=Failed", watch=False)
        pods = [to_pod_info(pod) for pod in pod_list.items or []]
        return [pod for pod in pods if pod.status_reason == "Evicted"]

    async def close(self):
        """Close the Kubernetes API client if it exists."""
        if self._api:
            await self._api.api_client.close()
            logger.debug("PodCollector Kubernetes client closed.")
            self._api = None
