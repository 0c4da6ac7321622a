# src/kubedrain/models/drain.py
"""
This module defines the Pydantic data models describing one drain run:
the candidates chosen by the selector, the per-node state machine states,
and the outcomes reported back to the caller.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .metrics import UtilizationSample


class DrainState(str, Enum):
    """States of a single node's drain, in the only order they may be entered."""

    SELECTED = "selected"
    CORDONED = "cordoned"
    EVICTING = "evicting"
    DRAINED = "drained"
    TERMINATING = "terminating"
    TERMINATED = "terminated"
    FAILED = "failed"


DRAIN_STATE_ORDER = [
    DrainState.SELECTED,
    DrainState.CORDONED,
    DrainState.EVICTING,
    DrainState.DRAINED,
    DrainState.TERMINATING,
    DrainState.TERMINATED,
]

TERMINAL_STATES = frozenset({DrainState.TERMINATED, DrainState.FAILED})


class FailureReason(str, Enum):
    CORDON_FAILED = "cordon_failed"
    EVICTION_FAILED = "eviction_failed"
    TIMEOUT = "timeout"
    IDENTITY_UNRESOLVABLE = "identity_unresolvable"
    TERMINATION_FAILED = "termination_failed"
    CANCELLED = "cancelled"


class DrainCandidate(BaseModel):
    """
    A node that matched a utilization sample and the pool allow-list.
    """

    node_name: str = Field(..., description="Kubernetes node name.")
    pool_label: str = Field(..., description="Node pool label value that admitted the node.")
    utilization: float = Field(..., description="Matched utilization percentage.")
    instance_id: Optional[str] = Field(None, description="Compute instance id, resolved before termination.")
    provider_id: Optional[str] = Field(None, description="spec.providerID of the node at selection time.")
    instance_type: Optional[str] = Field(None, description="Instance type, informational.")
    unschedulable: bool = Field(False, description="Node was already cordoned at selection time.")


class DrainOutcome(BaseModel):
    """
    Final result for one node of a drain run.
    """

    node_name: str
    final_state: DrainState
    reason: Optional[FailureReason] = None
    error: Optional[str] = None
    utilization: Optional[float] = None
    instance_id: Optional[str] = None
    deleted_pods: int = 0
    history: List[DrainState] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.final_state == DrainState.TERMINATED


class DrainReport(BaseModel):
    """
    Everything a caller gets back from ``run_drain``.
    """

    resource: str
    threshold: float
    dry_run: bool
    samples: List[UtilizationSample] = Field(default_factory=list)
    candidates: List[DrainCandidate] = Field(default_factory=list)
    outcomes: List[DrainOutcome] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def failed(self) -> List[DrainOutcome]:
        return [o for o in self.outcomes if o.final_state == DrainState.FAILED]
