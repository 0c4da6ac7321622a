# src/kubedrain/core/eviction_filter.py
"""
Pod classification for the drain loop.

Every pod found on a draining node goes through ``PodEvictionFilter.classify``
on every poll. The filter is pure: it only looks at the pod's owner
references, namespace, annotations and scheduling condition.
"""

import logging
from typing import Iterable, Optional

from ..models.pod import EvictionDecision, PodInfo, ProtectionReason

logger = logging.getLogger(__name__)

MIRROR_POD_ANNOTATION = "kubernetes.io/config.mirror"


class PodEvictionFilter:
    """
    Decides, per pod, whether the drain controller may delete it and with
    which grace period.
    """

    def __init__(
        self,
        critical_namespaces: Iterable[str] = ("kube-system",),
        critical_annotations: Iterable[str] = ("scheduler.alpha.kubernetes.io/critical-pod",),
        strict: bool = False,
        protected_pods_block_termination: bool = True,
    ):
        self.critical_namespaces = frozenset(critical_namespaces)
        self.critical_annotations = frozenset(critical_annotations)
        self.strict = strict
        self.protected_pods_block_termination = protected_pods_block_termination

    @classmethod
    def from_settings(cls, settings) -> "PodEvictionFilter":
        return cls(
            critical_namespaces=settings.CRITICAL_NAMESPACES,
            critical_annotations=settings.CRITICAL_POD_ANNOTATIONS,
            strict=settings.DRAIN_STRICT_MODE,
            protected_pods_block_termination=settings.PROTECTED_PODS_BLOCK_TERMINATION,
        )

    def classify(self, pod: PodInfo) -> EvictionDecision:
        reason = self._protection_reason(pod)
        if reason is not None:
            return EvictionDecision.protect(reason)
        return EvictionDecision.evict(force_immediate=self._is_unschedulable(pod))

    def blocks_termination(self, pod: PodInfo) -> bool:
        return self.classify(pod).blocks_termination(self.protected_pods_block_termination)

    def _protection_reason(self, pod: PodInfo) -> Optional[ProtectionReason]:
        kinds = {ref.kind for ref in pod.owner_references}
        if "DaemonSet" in kinds:
            return ProtectionReason.DAEMONSET
        if self.strict and "StatefulSet" in kinds:
            return ProtectionReason.STATEFULSET
        if MIRROR_POD_ANNOTATION in pod.annotations:
            return ProtectionReason.MIRROR_POD
        if pod.namespace in self.critical_namespaces:
            return ProtectionReason.CRITICAL_NAMESPACE
        if any(key in pod.annotations for key in self.critical_annotations):
            return ProtectionReason.CRITICAL_ANNOTATION
        return None

    @staticmethod
    def _is_unschedulable(pod: PodInfo) -> bool:
        # A pod that cannot be rescheduled gains nothing from a graceful shutdown window.
        for cond in pod.conditions:
            if cond.type == "PodScheduled" and cond.status == "False" and cond.reason == "Unschedulable":
                return True
        return False
