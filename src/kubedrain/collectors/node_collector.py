# src/kubedrain/collectors/node_collector.py

import asyncio
import logging
from typing import Dict, Optional

import aiohttp
from kubernetes_asyncio.client.rest import ApiException

from kubedrain.core.config import Config
from kubedrain.core.exceptions import NodeInventoryError
from kubedrain.core.k8s_client import get_core_v1_api
from kubedrain.models.node import NodeInfo

from .base_collector import BaseCollector

logger = logging.getLogger(__name__)

INSTANCE_TYPE_LABELS = ("node.kubernetes.io/instance-type", "beta.kubernetes.io/instance-type")


class NodeCollector(BaseCollector):
    """Reads the live node inventory from the Kubernetes cluster."""

    def __init__(self, settings: Config, api=None):
        self.settings = settings
        self.pool_label_key = settings.NODE_POOL_LABEL
        self.address_annotation_key = settings.NODE_ADDRESS_ANNOTATION
        self.api_timeout = settings.K8S_API_TIMEOUT_SECONDS
        self._api = api

    async def _ensure_client(self):
        """
        Lazily initialize the Kubernetes Async client using the centralized thread-safe loader.
        """
        if self._api:
            return self._api

        self._api = await get_core_v1_api()
        return self._api

    async def collect(self) -> Dict[str, NodeInfo]:
        """
        Lists every node in the cluster.

        Returns:
            dict: node name -> NodeInfo.

        Raises:
            NodeInventoryError: if the cluster cannot be reached or refuses the listing.
                A drain run must not continue on a partial or missing inventory.
        """
        api = await self._ensure_client()
        if not api:
            raise NodeInventoryError("Kubernetes client not configured; cannot list nodes.")

        try:
            nodes = await asyncio.wait_for(api.list_node(watch=False), timeout=self.api_timeout)
        except ApiException as e:
            raise NodeInventoryError(f"Kubernetes API error while listing nodes: {e.status} {e.reason}") from e
        except asyncio.TimeoutError as e:
            raise NodeInventoryError(f"Listing nodes timed out after {self.api_timeout:g}s") from e
        except aiohttp.ClientError as e:
            raise NodeInventoryError(f"Failed to reach the Kubernetes API while listing nodes: {e}") from e

        nodes_info = {}
        for node in nodes.items or []:
            info = self.to_node_info(node)
            nodes_info[info.name] = info
            logger.debug(
                " -> Node '%s': pool=%s, address=%s, unschedulable=%s",
                info.name,
                info.pool_label,
                info.provided_address,
                info.unschedulable,
            )

        if not nodes_info:
            logger.warning("No nodes found in the cluster.")
        else:
            logger.info("Listed %d node(s) from the cluster.", len(nodes_info))
        return nodes_info

    async def get_node(self, name: str) -> NodeInfo:
        """Reads one node; ApiException is left to the caller."""
        api = await self._ensure_client()
        node = await api.read_node(name)
        return self.to_node_info(node)

    def to_node_info(self, node) -> NodeInfo:
        metadata = node.metadata
        labels = metadata.labels or {}
        annotations = metadata.annotations or {}
        spec = node.spec

        return NodeInfo(
            name=metadata.name,
            pool_label=labels.get(self.pool_label_key),
            provided_address=annotations.get(self.address_annotation_key),
            unschedulable=bool(spec and spec.unschedulable),
            provider_id=spec.provider_id if spec else None,
            instance_type=self._extract_instance_type(labels),
        )

    @staticmethod
    def _extract_instance_type(labels: dict) -> Optional[str]:
        for key in INSTANCE_TYPE_LABELS:
            if labels.get(key):
                return labels[key]
        return None

    async def close(self):
        """Close the Kubernetes API client if it exists."""
        if self._api:
            await self._api.api_client.close()
            logger.debug("NodeCollector Kubernetes client closed.")
            self._api = None
