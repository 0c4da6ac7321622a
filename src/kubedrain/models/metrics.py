# src/kubedrain/models/metrics.py
"""
Pydantic models for structured data returned from the PrometheusCollector.
"""

from pydantic import BaseModel, ConfigDict, Field


class UtilizationSample(BaseModel):
    """
    A single node-level utilization value that already satisfies the
    threshold predicate embedded in the query expression.
    """

    model_config = ConfigDict(frozen=True)

    node_identity: str = Field(..., description="Node address (port stripped) or node name, per identity mode")
    value: float = Field(..., description="Utilization percentage reported by the query")
