# tests/core/test_processor.py

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from kubernetes_asyncio.client.rest import ApiException

from kubedrain.collectors.prometheus_collector import disk_usage_query, memory_usage_query
from kubedrain.core.exceptions import MetricsQueryError, NodeInventoryError, PodInventoryError
from kubedrain.core.processor import DrainProcessor
from kubedrain.core.selector import NodeSelector
from kubedrain.models.drain import DrainOutcome, DrainState
from kubedrain.models.metrics import UtilizationSample
from kubedrain.models.node import NodeInfo
from kubedrain.models.pod import PodInfo


@pytest.fixture
def metrics_source():
    source = MagicMock()
    source.query = AsyncMock(
        return_value={
            UtilizationSample(node_identity="10.0.1.7", value=92.0),
            UtilizationSample(node_identity="10.0.3.3", value=75.0),
        }
    )
    source.close = AsyncMock()
    return source


@pytest.fixture
def node_collector():
    collector = MagicMock()
    collector.collect = AsyncMock(
        return_value={
            "node-a": NodeInfo(name="node-a", pool_label="batch", provided_address="10.0.1.7"),
            "node-c": NodeInfo(name="node-c", pool_label="spot", provided_address="10.0.3.3"),
        }
    )
    return collector


@pytest.fixture
def orchestrator():
    orch = MagicMock()

    async def _drain(candidates):
        return [
            DrainOutcome(node_name=c.node_name, final_state=DrainState.TERMINATED, utilization=c.utilization)
            for c in candidates
        ]

    orch.drain = AsyncMock(side_effect=_drain)
    return orch


@pytest.fixture
def processor(settings, metrics_source, node_collector, orchestrator, core_api):
    pod_collector = MagicMock()
    pod_collector.list_evicted_pods = AsyncMock(return_value=[])
    return DrainProcessor(
        settings,
        metrics_source=metrics_source,
        node_collector=node_collector,
        selector=NodeSelector(),
        orchestrator=orchestrator,
        pod_collector=pod_collector,
        api=core_api,
    )


async def test_run_drain_queries_selects_and_drains(processor, metrics_source, orchestrator):
    report = await processor.run_drain()

    metrics_source.query.assert_awaited_once_with(disk_usage_query(70))
    drained = orchestrator.drain.await_args.args[0]
    assert [c.node_name for c in drained] == ["node-c", "node-a"]
    assert [o.node_name for o in report.outcomes] == ["node-c", "node-a"]
    assert report.dry_run is False
    assert report.failed == []
    assert [s.value for s in report.samples] == [92.0, 75.0]


async def test_run_drain_threshold_and_resource_override(processor, metrics_source):
    report = await processor.run_drain(threshold=40, resource="memory")

    metrics_source.query.assert_awaited_once_with(memory_usage_query(40))
    assert report.resource == "memory"
    assert report.threshold == 40


async def test_dry_run_never_drains(processor, orchestrator):
    report = await processor.run_drain(dry_run=True)

    orchestrator.drain.assert_not_awaited()
    assert report.dry_run is True
    assert {c.node_name for c in report.candidates} == {"node-a", "node-c"}
    assert report.outcomes == []


async def test_no_candidates_skips_orchestrator(settings, processor, orchestrator):
    settings.DRAIN_NODE_LABELS = ["other-pool"]

    report = await processor.run_drain()

    assert report.candidates == []
    orchestrator.drain.assert_not_awaited()


async def test_metrics_failure_aborts_before_any_mutation(processor, metrics_source, node_collector, orchestrator):
    metrics_source.query.side_effect = MetricsQueryError("prometheus down")

    with pytest.raises(MetricsQueryError):
        await processor.run_drain()

    node_collector.collect.assert_not_awaited()
    orchestrator.drain.assert_not_awaited()


async def test_inventory_failure_aborts_before_any_mutation(processor, node_collector, orchestrator):
    node_collector.collect.side_effect = NodeInventoryError("forbidden")

    with pytest.raises(NodeInventoryError):
        await processor.run_drain()

    orchestrator.drain.assert_not_awaited()


async def test_usage_sorted_highest_first(processor):
    samples = await processor.usage()

    assert [s.node_identity for s in samples] == ["10.0.1.7", "10.0.3.3"]


async def test_cleanup_evicted_pods_skips_critical_namespaces(processor, core_api):
    processor.pod_collector.list_evicted_pods.return_value = [
        PodInfo(name="web-1", namespace="default", phase="Failed", status_reason="Evicted"),
        PodInfo(name="proxy-1", namespace="kube-system", phase="Failed", status_reason="Evicted"),
        PodInfo(name="web-2", namespace="default", phase="Failed", status_reason="Evicted"),
    ]
    core_api.delete_namespaced_pod.side_effect = [None, ApiException(status=404, reason="Not Found")]

    deleted = await processor.cleanup_evicted_pods()

    assert deleted == ["web-1", "web-2"]
    assert core_api.delete_namespaced_pod.await_count == 2
    core_api.delete_namespaced_pod.assert_any_await("web-1", "default")


async def test_cleanup_evicted_pods_continues_after_errors(processor, core_api):
    processor.pod_collector.list_evicted_pods.return_value = [
        PodInfo(name="web-1", namespace="default", phase="Failed", status_reason="Evicted"),
        PodInfo(name="web-2", namespace="default", phase="Failed", status_reason="Evicted"),
    ]
    core_api.delete_namespaced_pod.side_effect = [ApiException(status=403, reason="Forbidden"), None]

    deleted = await processor.cleanup_evicted_pods()

    assert deleted == ["web-2"]


async def test_close_releases_clients(processor, metrics_source, core_api):
    await processor.close()

    metrics_source.close.assert_awaited_once()
    core_api.api_client.close.assert_awaited_once()


async def test_close_releases_policy_api_through_shared_session(processor, orchestrator, core_api):
    orchestrator.policy_api = MagicMock(api_client=core_api.api_client)

    await processor.close()

    orchestrator.policy_api.api_client.close.assert_awaited_once()


async def test_cleanup_evicted_pods_hanging_listing_raises(settings, processor, core_api):
    settings.K8S_API_TIMEOUT_SECONDS = 0.05

    async def _hang():
        await asyncio.sleep(3600)

    processor.pod_collector.list_evicted_pods.side_effect = _hang

    with pytest.raises(PodInventoryError, match="timed out"):
        await asyncio.wait_for(processor.cleanup_evicted_pods(), timeout=2)

    core_api.delete_namespaced_pod.assert_not_awaited()


async def test_cleanup_evicted_pods_transport_error_raises(processor):
    processor.pod_collector.list_evicted_pods.side_effect = aiohttp.ClientConnectionError("connection reset")

    with pytest.raises(PodInventoryError, match="connection reset"):
        await processor.cleanup_evicted_pods()


async def test_cleanup_evicted_pods_hanging_delete_moves_on(settings, processor, core_api):
    settings.K8S_API_TIMEOUT_SECONDS = 0.05
    processor.pod_collector.list_evicted_pods.return_value = [
        PodInfo(name="web-1", namespace="default", phase="Failed", status_reason="Evicted"),
        PodInfo(name="web-2", namespace="default", phase="Failed", status_reason="Evicted"),
    ]

    async def _delete(name, namespace):
        if name == "web-1":
            await asyncio.sleep(3600)

    core_api.delete_namespaced_pod.side_effect = _delete

    deleted = await asyncio.wait_for(processor.cleanup_evicted_pods(), timeout=2)

    assert deleted == ["web-2"]
