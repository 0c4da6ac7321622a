# src/kubedrain/models/node.py

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class NodeInfo(BaseModel):
    """
    Pydantic model for the node attributes the drain controller needs.

    Attributes:
        name: Node name
        pool_label: Value of the configured node-pool label (e.g. karpenter.sh/nodepool)
        provided_address: Value of the configured provider address annotation
        unschedulable: Whether the node is already cordoned
        provider_id: Cloud provider id (spec.providerID), e.g. aws:///ap-northeast-2a/i-0abc
        instance_type: Instance type label, informational only
    """

    model_config = ConfigDict(frozen=False, extra="forbid")

    name: str = Field(..., description="Node name")
    pool_label: Optional[str] = Field(None, description="Node pool label value")
    provided_address: Optional[str] = Field(None, description="Provider address annotation value")
    unschedulable: bool = Field(default=False, description="Node is marked unschedulable")
    provider_id: Optional[str] = Field(None, description="spec.providerID")
    instance_type: Optional[str] = Field(None, description="Instance type")
