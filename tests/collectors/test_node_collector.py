# tests/collectors/test_node_collector.py

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from kubernetes_asyncio.client.rest import ApiException

from kubedrain.collectors.node_collector import NodeCollector
from kubedrain.core.exceptions import NodeInventoryError


async def test_collect_maps_pool_address_and_provider(settings, core_api, node_factory):
    core_api.list_node.return_value = MagicMock(
        items=[
            node_factory(
                "node-a",
                pool="batch",
                address="10.0.1.7",
                provider_id="aws:///ap-northeast-2a/i-0123456789abcdef0",
                instance_type="m5.large",
            ),
            node_factory("node-b", unschedulable=True),
        ]
    )
    collector = NodeCollector(settings, api=core_api)

    inventory = await collector.collect()

    core_api.list_node.assert_awaited_once_with(watch=False)
    assert set(inventory) == {"node-a", "node-b"}
    node_a = inventory["node-a"]
    assert node_a.pool_label == "batch"
    assert node_a.provided_address == "10.0.1.7"
    assert node_a.provider_id == "aws:///ap-northeast-2a/i-0123456789abcdef0"
    assert node_a.instance_type == "m5.large"
    assert node_a.unschedulable is False

    node_b = inventory["node-b"]
    assert node_b.pool_label is None
    assert node_b.provided_address is None
    assert node_b.unschedulable is True


async def test_collect_uses_configured_label_keys(settings, core_api, node_factory):
    settings.NODE_POOL_LABEL = "eks.amazonaws.com/nodegroup"
    node = node_factory("node-a")
    node.metadata.labels = {"eks.amazonaws.com/nodegroup": "ng-1"}
    core_api.list_node.return_value = MagicMock(items=[node])

    inventory = await NodeCollector(settings, api=core_api).collect()

    assert inventory["node-a"].pool_label == "ng-1"


async def test_collect_empty_cluster(settings, core_api):
    core_api.list_node.return_value = MagicMock(items=[])

    assert await NodeCollector(settings, api=core_api).collect() == {}


async def test_collect_api_error_raises_inventory_error(settings, core_api):
    core_api.list_node.side_effect = ApiException(status=403, reason="Forbidden")

    with pytest.raises(NodeInventoryError, match="403"):
        await NodeCollector(settings, api=core_api).collect()


async def test_collect_without_kube_config_raises(settings, mocker):
    mocker.patch("kubedrain.collectors.node_collector.get_core_v1_api", new=AsyncMock(return_value=None))

    with pytest.raises(NodeInventoryError):
        await NodeCollector(settings).collect()


async def test_get_node_reads_single_node(settings, core_api, node_factory):
    core_api.read_node.return_value = node_factory("node-a", unschedulable=True, provider_id="aws:///z/i-0abcdef12")

    node = await NodeCollector(settings, api=core_api).get_node("node-a")

    core_api.read_node.assert_awaited_once_with("node-a")
    assert node.unschedulable is True
    assert node.provider_id == "aws:///z/i-0abcdef12"


async def test_close_closes_api_client(settings, core_api):
    collector = NodeCollector(settings, api=core_api)

    await collector.close()

    core_api.api_client.close.assert_awaited_once()


async def test_collect_hanging_api_raises_inventory_error(settings, core_api):
    settings.K8S_API_TIMEOUT_SECONDS = 0.05

    async def _hang(**kwargs):
        await asyncio.sleep(3600)

    core_api.list_node.side_effect = _hang

    with pytest.raises(NodeInventoryError, match="timed out"):
        await asyncio.wait_for(NodeCollector(settings, api=core_api).collect(), timeout=2)


async def test_collect_transport_error_raises_inventory_error(settings, core_api):
    core_api.list_node.side_effect = aiohttp.ClientConnectionError("connection refused")

    with pytest.raises(NodeInventoryError, match="connection refused"):
        await NodeCollector(settings, api=core_api).collect()
