# tests/conftest.py

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from kubedrain.core.config import Config


@pytest.fixture(autouse=True)
def mock_settings_env_vars(monkeypatch):
    """
    Pytest fixture to mock environment variables for the config module.

    This fixture runs automatically for every test (`autouse=True`). It uses
    monkeypatch to set environment variables, ensuring that the application's
    config is predictable and isolated from the actual environment.
    """
    monkeypatch.setenv("PROMETHEUS_URL", "http://mock-prometheus:9090")
    monkeypatch.setenv("DRAIN_NODE_LABELS", "batch, spot")
    monkeypatch.setenv("DRAIN_RESOURCE", "disk")
    monkeypatch.setenv("DRAIN_THRESHOLD_PERCENTAGE", "70")
    monkeypatch.setenv("AWS_REGION", "ap-northeast-2")
    for key in ("PROMETHEUS_BEARER_TOKEN", "PROMETHEUS_SCOPE_ORG_ID", "PROMETHEUS_USERNAME", "PROMETHEUS_PASSWORD"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def settings():
    """A Config with drain timings shrunk so state machine tests run instantly."""
    cfg = Config()
    cfg.DRAIN_TIMEOUT_SECONDS = 2
    cfg.DRAIN_POLL_INTERVAL_SECONDS = 0.01
    cfg.DRAIN_DELETE_INTERVAL_SECONDS = 0
    cfg.DRAIN_SETTLE_SECONDS = 0
    cfg.K8S_API_TIMEOUT_SECONDS = 1
    return cfg


# --- Kubernetes object builders ---
# Plain namespaces rather than MagicMock: an auto-created deletion_timestamp
# attribute would make every pod look like it is already terminating.


def make_k8s_pod(
    name,
    namespace="default",
    node_name="node-a",
    owner_kind=None,
    annotations=None,
    phase="Running",
    reason=None,
    deleting=False,
    conditions=None,
):
    owners = [SimpleNamespace(kind=owner_kind, name=f"{name}-owner")] if owner_kind else None
    return SimpleNamespace(
        metadata=SimpleNamespace(
            name=name,
            namespace=namespace,
            owner_references=owners,
            annotations=annotations,
            deletion_timestamp="2024-01-01T00:00:00Z" if deleting else None,
        ),
        spec=SimpleNamespace(node_name=node_name),
        status=SimpleNamespace(phase=phase, reason=reason, conditions=conditions),
    )


def make_k8s_node(
    name,
    pool=None,
    address=None,
    unschedulable=None,
    provider_id=None,
    instance_type=None,
):
    labels = {}
    if pool is not None:
        labels["karpenter.sh/nodepool"] = pool
    if instance_type is not None:
        labels["node.kubernetes.io/instance-type"] = instance_type
    annotations = {"alpha.kubernetes.io/provided-node-ip": address} if address is not None else None
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name, labels=labels, annotations=annotations),
        spec=SimpleNamespace(unschedulable=unschedulable, provider_id=provider_id),
    )


@pytest.fixture
def core_api():
    """An AsyncMock standing in for kubernetes_asyncio's CoreV1Api."""
    api = AsyncMock()
    api.api_client.close = AsyncMock()
    return api


@pytest.fixture
def pod_factory():
    return make_k8s_pod


@pytest.fixture
def node_factory():
    return make_k8s_node
