# src/kubedrain/models/pod.py
"""
Pod-side data models: the typed view of a pod that the eviction filter
classifies, and the decision it returns.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class OwnerReference(BaseModel):
    kind: str
    name: Optional[str] = None


class PodCondition(BaseModel):
    type: str
    status: str
    reason: Optional[str] = None


class PodInfo(BaseModel):
    """
    Represents a pod bound to a node, as seen by one pod listing.
    """

    name: str = Field(..., description="The name of the Kubernetes pod.")
    namespace: str = Field(..., description="The namespace the pod belongs to.")
    node_name: Optional[str] = Field(None, description="The node the pod is bound to.")
    phase: Optional[str] = Field(None, description="Pod phase (Pending, Running, ...).")
    status_reason: Optional[str] = Field(None, description="status.reason, e.g. 'Evicted'.")
    deleting: bool = Field(False, description="metadata.deletionTimestamp is set.")
    owner_references: List[OwnerReference] = Field(default_factory=list)
    annotations: Dict[str, str] = Field(default_factory=dict)
    conditions: List[PodCondition] = Field(default_factory=list)


class ProtectionReason(str, Enum):
    """Why a pod must never be deleted by the drain controller."""

    DAEMONSET = "daemonset"
    STATEFULSET = "statefulset"
    MIRROR_POD = "mirror_pod"
    CRITICAL_NAMESPACE = "critical_namespace"
    CRITICAL_ANNOTATION = "critical_annotation"


# Pods that live and die with the node itself; they never hold a drain open.
NODE_BOUND_REASONS = frozenset({ProtectionReason.DAEMONSET, ProtectionReason.MIRROR_POD})


class EvictionDecision(BaseModel):
    """
    Classification of a single pod at one point in time.

    ``protected`` pods are never deleted. ``force_immediate`` is only ever set
    on evictable pods and selects a zero grace period.
    """

    model_config = ConfigDict(frozen=True)

    protected: bool
    force_immediate: bool = False
    reason: Optional[ProtectionReason] = None

    @classmethod
    def protect(cls, reason: ProtectionReason) -> "EvictionDecision":
        return cls(protected=True, force_immediate=False, reason=reason)

    @classmethod
    def evict(cls, force_immediate: bool = False) -> "EvictionDecision":
        return cls(protected=False, force_immediate=force_immediate)

    def blocks_termination(self, protected_pods_block: bool = True) -> bool:
        """Whether a pod with this decision keeps its node from reaching the drained state."""
        if not self.protected:
            return True
        if self.reason in NODE_BOUND_REASONS:
            return False
        return protected_pods_block
