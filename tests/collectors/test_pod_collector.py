# tests/collectors/test_pod_collector.py

from types import SimpleNamespace
from unittest.mock import MagicMock

from kubedrain.collectors.pod_collector import PodCollector, node_pod_field_selector, to_pod_info


def test_field_selector_excludes_terminal_phases():
    assert (
        node_pod_field_selector("node-a")
        == "spec.nodeName=node-a,status.phase!=Succeeded,status.phase!=Failed"
    )


def test_to_pod_info_maps_owners_conditions_and_deletion(pod_factory):
    pod = pod_factory(
        "web-1",
        namespace="shop",
        owner_kind="ReplicaSet",
        annotations={"team": "checkout"},
        deleting=True,
        conditions=[SimpleNamespace(type="PodScheduled", status="False", reason="Unschedulable")],
    )

    info = to_pod_info(pod)

    assert info.name == "web-1"
    assert info.namespace == "shop"
    assert info.node_name == "node-a"
    assert info.deleting is True
    assert [ref.kind for ref in info.owner_references] == ["ReplicaSet"]
    assert info.annotations == {"team": "checkout"}
    assert info.conditions[0].reason == "Unschedulable"


def test_to_pod_info_handles_missing_optional_fields(pod_factory):
    info = to_pod_info(pod_factory("bare"))

    assert info.deleting is False
    assert info.owner_references == []
    assert info.annotations == {}
    assert info.conditions == []


async def test_list_pods_on_node_uses_field_selector(core_api, pod_factory):
    core_api.list_pod_for_all_namespaces.return_value = MagicMock(items=[pod_factory("web-1"), pod_factory("web-2")])
    collector = PodCollector(api=core_api)

    pods = await collector.list_pods_on_node("node-a")

    core_api.list_pod_for_all_namespaces.assert_awaited_once_with(
        field_selector=node_pod_field_selector("node-a"), watch=False
    )
    assert [p.name for p in pods] == ["web-1", "web-2"]


async def test_list_evicted_pods_keeps_only_evicted_reason(core_api, pod_factory):
    core_api.list_pod_for_all_namespaces.return_value = MagicMock(
        items=[
            pod_factory("evicted-1", phase="Failed", reason="Evicted"),
            pod_factory("crashed-1", phase="Failed", reason="Error"),
        ]
    )

    pods = await PodCollector(api=core_api).list_evicted_pods()

    core_api.list_pod_for_all_namespaces.assert_awaited_once_with(field_selector="status.phase=Failed", watch=False)
    assert [p.name for p in pods] == ["evicted-1"]
