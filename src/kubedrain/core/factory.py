# src/kubedrain/core/factory.py
"""
Factory functions to wire the KubeDrain components from a single Config.
"""

import logging

from ..collectors.node_collector import NodeCollector
from ..collectors.pod_collector import PodCollector
from ..collectors.prometheus_collector import PrometheusCollector
from .config import Config
from .eviction_filter import PodEvictionFilter
from .exceptions import NodeInventoryError
from .k8s_client import get_core_v1_api, get_policy_v1_api
from .orchestrator import DrainOrchestrator
from .processor import DrainProcessor
from .selector import NodeSelector, get_matcher
from .terminator import InstanceTerminator

logger = logging.getLogger(__name__)


def get_selector(settings: Config) -> NodeSelector:
    matcher = get_matcher(settings.NODE_MATCH_STRATEGY)
    logger.info(f"Using '{matcher.name}' node match strategy.")
    return NodeSelector(matcher)


def get_orchestrator(settings: Config, api, policy_api=None) -> DrainOrchestrator:
    return DrainOrchestrator(
        settings,
        api=api,
        policy_api=policy_api,
        eviction_filter=PodEvictionFilter.from_settings(settings),
        terminator=InstanceTerminator(region=settings.AWS_REGION),
        pod_collector=PodCollector(api=api),
        node_collector=NodeCollector(settings, api=api),
    )


async def get_processor(settings: Config) -> DrainProcessor:
    """
    Builds a DrainProcessor with live Kubernetes and Prometheus clients.

    Raises:
        NodeInventoryError: when no Kubernetes configuration can be loaded.
    """
    api = await get_core_v1_api()
    if api is None:
        raise NodeInventoryError("Kubernetes configuration could not be loaded.")
    # Shares the core client's session, so closing the processor releases both.
    policy_api = await get_policy_v1_api(api.api_client) if settings.DRAIN_USE_EVICTION_API else None

    return DrainProcessor(
        settings,
        metrics_source=PrometheusCollector(settings),
        node_collector=NodeCollector(settings, api=api),
        selector=get_selector(settings),
        orchestrator=get_orchestrator(settings, api, policy_api),
        pod_collector=PodCollector(api=api),
        api=api,
    )
