# src/kubedrain/core/selector.py
"""
Joins utilization samples against the live node inventory.

A node is matched to a sample through a named ``NodeMatcher`` strategy. The
default, ``SubstringAddressMatcher``, accepts a node when its provider address
annotation *contains* the sample identity. The match is loose: the
annotation may hold a full IP or a compound value, and "10.0.0.1" will also
match "10.0.0.12". ``ExactAddressMatcher`` is available for clusters where that
matters; switching strategies does not touch the orchestrator.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Mapping

from ..models.drain import DrainCandidate
from ..models.metrics import UtilizationSample
from ..models.node import NodeInfo

logger = logging.getLogger(__name__)


class NodeMatcher(ABC):
    name = "base"

    @abstractmethod
    def matches(self, node: NodeInfo, sample: UtilizationSample) -> bool:
        pass


class SubstringAddressMatcher(NodeMatcher):
    name = "substring"

    def matches(self, node: NodeInfo, sample: UtilizationSample) -> bool:
        return bool(node.provided_address) and sample.node_identity in node.provided_address


class ExactAddressMatcher(NodeMatcher):
    """Matches the annotation, or the node name, exactly."""

    name = "exact"

    def matches(self, node: NodeInfo, sample: UtilizationSample) -> bool:
        identity = sample.node_identity
        if node.provided_address and node.provided_address.strip() == identity:
            return True
        return node.name == identity


MATCHERS = {
    SubstringAddressMatcher.name: SubstringAddressMatcher,
    ExactAddressMatcher.name: ExactAddressMatcher,
}


def get_matcher(name: str) -> NodeMatcher:
    try:
        return MATCHERS[name]()
    except KeyError:
        raise ValueError(f"Unknown node match strategy '{name}'. Use one of: {', '.join(MATCHERS)}")


class NodeSelector:
    """
    Produces drain candidates. Pure: no API calls, no state between calls.
    """

    def __init__(self, matcher: NodeMatcher = None):
        self.matcher = matcher or SubstringAddressMatcher()

    def select(
        self,
        samples: Iterable[UtilizationSample],
        inventory: Mapping[str, NodeInfo],
        allowed_pool_labels: Iterable[str],
        order: bool = True,
    ) -> List[DrainCandidate]:
        """
        Args:
            samples: Utilization samples, already filtered by the query threshold.
            inventory: node name -> NodeInfo.
            allowed_pool_labels: Pool label values eligible for draining.
            order: Sort ascending by utilization (least loaded first). Dry-run
                reports pass False and keep discovery order.
        """
        allowed = {label.strip() for label in allowed_pool_labels if label and label.strip()}
        candidates: Dict[str, DrainCandidate] = {}
        skipped_pool = set()

        for sample in samples:
            for node in inventory.values():
                if not self.matcher.matches(node, sample):
                    continue

                pool = (node.pool_label or "").strip()
                if pool not in allowed:
                    skipped_pool.add(node.name)
                    continue

                existing = candidates.get(node.name)
                # One candidate per node; several samples (e.g. one per filesystem) keep the highest value.
                if existing is not None and existing.utilization >= sample.value:
                    continue

                candidates[node.name] = DrainCandidate(
                    node_name=node.name,
                    pool_label=pool,
                    utilization=sample.value,
                    provider_id=node.provider_id,
                    instance_type=node.instance_type,
                    unschedulable=node.unschedulable,
                )

        if skipped_pool:
            logger.info(
                "Skipped %d node(s) above threshold outside the allowed pools: %s",
                len(skipped_pool),
                ", ".join(sorted(skipped_pool)),
            )

        result = list(candidates.values())
        if order:
            result.sort(key=lambda c: c.utilization)
        logger.info("Selected %d drain candidate(s).", len(result))
        return result
