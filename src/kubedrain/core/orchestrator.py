# src/kubedrain/core/orchestrator.py
"""
The drain state machine.

For every candidate node the orchestrator walks
``selected -> cordoned -> evicting -> drained -> terminating -> terminated``
or stops in ``failed``. Nodes are independent: one node failing, timing out or
raising never prevents the others from being processed, and the caller always
gets one DrainOutcome per candidate.

A node is only handed to the InstanceTerminator after a fresh pod listing
shows nothing left that blocks termination. When the per-node deadline runs
out first the node is left cordoned and is never terminated.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from kubernetes_asyncio import client
from kubernetes_asyncio.client.rest import ApiException

from ..collectors.node_collector import NodeCollector
from ..collectors.pod_collector import PodCollector
from ..models.drain import (
    DRAIN_STATE_ORDER,
    TERMINAL_STATES,
    DrainCandidate,
    DrainOutcome,
    DrainState,
    FailureReason,
)
from ..models.pod import EvictionDecision, PodInfo
from .config import Config
from .eviction_filter import PodEvictionFilter
from .exceptions import InstanceIdentityError, TerminationError
from .terminator import InstanceTerminator, resolve_instance_id

logger = logging.getLogger(__name__)

# Conflict, throttling and server-side errors are worth another attempt.
TRANSIENT_STATUSES = frozenset({409, 429, 500, 502, 503, 504})
PROPAGATION_POLICY = "Orphan"


class DrainTimeout(Exception):
    """The node's drain deadline passed before it reached the drained state."""


class InvalidTransition(Exception):
    pass


class NodeDrainStateMachine:
    """
    Tracks one node through one drain run. Transitions only ever move one
    step forward; ``failed`` can be entered from any non-terminal state.
    """

    def __init__(self, node_name: str):
        self.node_name = node_name
        self.state = DrainState.SELECTED
        self.history: List[DrainState] = [DrainState.SELECTED]
        self.reason: Optional[FailureReason] = None
        self.error: Optional[str] = None
        self.deleted_pods = 0

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, new_state: DrainState):
        if self.finished:
            raise InvalidTransition(f"{self.node_name}: already {self.state.value}")
        expected = DRAIN_STATE_ORDER[DRAIN_STATE_ORDER.index(self.state) + 1]
        if new_state != expected:
            raise InvalidTransition(f"{self.node_name}: {self.state.value} -> {new_state.value} is not allowed")
        logger.info("Node %s: %s -> %s", self.node_name, self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)

    def fail(self, reason: FailureReason, error: str):
        if self.finished:
            raise InvalidTransition(f"{self.node_name}: already {self.state.value}")
        logger.error("Node %s failed in state %s (%s): %s", self.node_name, self.state.value, reason.value, error)
        self.state = DrainState.FAILED
        self.history.append(DrainState.FAILED)
        self.reason = reason
        self.error = error


class DrainOrchestrator:
    """
    Runs cordon -> evict -> wait -> terminate for a set of candidates.
    """

    def __init__(
        self,
        settings: Config,
        api,
        eviction_filter: PodEvictionFilter,
        terminator: InstanceTerminator,
        policy_api=None,
        pod_collector: Optional[PodCollector] = None,
        node_collector: Optional[NodeCollector] = None,
    ):
        self.settings = settings
        self.api = api
        self.policy_api = policy_api
        self.eviction_filter = eviction_filter
        self.terminator = terminator
        self.pod_collector = pod_collector or PodCollector(api=api)
        self.node_collector = node_collector or NodeCollector(settings, api=api)

        self.timeout = settings.DRAIN_TIMEOUT_SECONDS
        self.poll_interval = settings.DRAIN_POLL_INTERVAL_SECONDS
        self.grace_period = settings.DRAIN_GRACE_PERIOD_SECONDS
        self.delete_interval = settings.DRAIN_DELETE_INTERVAL_SECONDS
        self.settle_seconds = settings.DRAIN_SETTLE_SECONDS
        self.api_timeout = settings.K8S_API_TIMEOUT_SECONDS
        self.use_eviction_api = settings.DRAIN_USE_EVICTION_API
        self.force_on_disruption_block = settings.DRAIN_FORCE_ON_DISRUPTION_BLOCK
        self.max_parallel = settings.DRAIN_MAX_PARALLEL_NODES

        # One lock per node name, shared by every run of this orchestrator.
        # An entry lives only while some drain of that node holds or awaits it.
        self._node_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    def _lock_for(self, node_name: str) -> asyncio.Lock:
        lock = self._node_locks.get(node_name)
        if lock is None:
            lock = self._node_locks[node_name] = asyncio.Lock()
        return lock

    async def drain(self, candidates: Iterable[DrainCandidate]) -> List[DrainOutcome]:
        """
        Drains every candidate and returns one outcome per candidate, in input order.
        """
        candidates = list(candidates)
        semaphore = asyncio.Semaphore(self.max_parallel)

        async def _bounded(candidate: DrainCandidate) -> DrainOutcome:
            async with semaphore:
                return await self.drain_node(candidate)

        return list(await asyncio.gather(*(_bounded(c) for c in candidates)))

    async def drain_node(self, candidate: DrainCandidate) -> DrainOutcome:
        name = candidate.node_name
        lock = self._lock_for(name)
        self._lock_users[name] = self._lock_users.get(name, 0) + 1
        try:
            if lock.locked():
                logger.info("Node %s is already being drained; waiting for that drain to finish.", name)
            async with lock:
                return await self._drain_node(candidate)
        finally:
            self._lock_users[name] -= 1
            if not self._lock_users[name]:
                del self._lock_users[name]
                del self._node_locks[name]

    async def _drain_node(self, candidate: DrainCandidate) -> DrainOutcome:
        machine = NodeDrainStateMachine(candidate.node_name)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        instance_id = candidate.instance_id

        try:
            provider_id = await self._cordon(candidate, machine, deadline)
            await self._evict_until_drained(candidate.node_name, machine, deadline)
            instance_id = await self._terminate(candidate, machine, provider_id or candidate.provider_id)
        except DrainTimeout as e:
            machine.fail(FailureReason.TIMEOUT, str(e))
        except ApiException as e:
            machine.fail(self._failure_reason(machine), f"Kubernetes API error {e.status}: {e.reason}")
        except asyncio.CancelledError:
            if not machine.finished:
                machine.fail(FailureReason.CANCELLED, "drain cancelled")
            raise
        except Exception as e:
            # Anything unexpected stays confined to this node.
            logger.error(f"Unexpected error while draining node {candidate.node_name}: {e}", exc_info=True)
            if not machine.finished:
                machine.fail(self._failure_reason(machine), str(e))

        return DrainOutcome(
            node_name=candidate.node_name,
            final_state=machine.state,
            reason=machine.reason,
            error=machine.error,
            utilization=candidate.utilization,
            instance_id=instance_id,
            deleted_pods=machine.deleted_pods,
            history=list(machine.history),
        )

    @staticmethod
    def _failure_reason(machine: NodeDrainStateMachine) -> FailureReason:
        if machine.state == DrainState.SELECTED:
            return FailureReason.CORDON_FAILED
        if machine.state == DrainState.TERMINATING:
            return FailureReason.TERMINATION_FAILED
        return FailureReason.EVICTION_FAILED

    # --- API call helpers ---

    def _remaining(self, deadline: float) -> float:
        return deadline - asyncio.get_running_loop().time()

    async def _call(
        self,
        factory: Callable[[], Awaitable],
        deadline: float,
        what: str,
        retry_statuses: frozenset = TRANSIENT_STATUSES,
        budget: Optional[float] = None,
    ):
        """
        Runs one API call under the API timeout and the given deadline, retrying
        transient failures while budget remains. ``budget`` is the length of the
        window behind ``deadline`` as quoted in the timeout message; it defaults
        to the node drain timeout.
        """
        budget = self.timeout if budget is None else budget
        while True:
            remaining = self._remaining(deadline)
            if remaining <= 0:
                raise DrainTimeout(f"deadline of {budget:g}s exceeded while trying to {what}")
            try:
                return await asyncio.wait_for(factory(), timeout=min(self.api_timeout, remaining))
            except asyncio.TimeoutError:
                logger.warning("Timed out trying to %s; retrying before the deadline.", what)
            except ApiException as e:
                if e.status not in retry_statuses:
                    raise
                logger.warning("Transient API error %s trying to %s; retrying.", e.status, what)

            remaining = self._remaining(deadline)
            if remaining <= 0:
                raise DrainTimeout(f"deadline of {budget:g}s exceeded while trying to {what}")
            await asyncio.sleep(min(self.poll_interval, remaining))

    # --- selected -> cordoned ---

    async def _cordon(self, candidate: DrainCandidate, machine: NodeDrainStateMachine, deadline: float):
        name = candidate.node_name
        node = await self._call(lambda: self.node_collector.get_node(name), deadline, f"read node {name}")

        if node.unschedulable:
            logger.info("Node %s is already unschedulable", name)
        else:
            logger.info("Cordoning node %s", name)
            await self._call(
                lambda: self.api.patch_node(name, {"spec": {"unschedulable": True}}),
                deadline,
                f"cordon node {name}",
            )

        machine.advance(DrainState.CORDONED)
        return node.provider_id

    # --- cordoned -> evicting -> drained ---

    async def _evict_until_drained(self, node_name: str, machine: NodeDrainStateMachine, deadline: float):
        machine.advance(DrainState.EVICTING)

        while True:
            pods = await self._call(
                lambda: self.pod_collector.list_pods_on_node(node_name), deadline, f"list pods on {node_name}"
            )

            blocking: List[PodInfo] = []
            evictable = []
            for pod in pods:
                decision = self.eviction_filter.classify(pod)
                if decision.blocks_termination(self.eviction_filter.protected_pods_block_termination):
                    blocking.append(pod)
                if not decision.protected and not pod.deleting:
                    evictable.append((pod, decision))

            if not blocking:
                logger.info("All non-protected pods have been terminated on node %s", node_name)
                machine.advance(DrainState.DRAINED)
                return

            for pod, decision in evictable:
                if await self._remove_pod(pod, decision, deadline):
                    machine.deleted_pods += 1
                if self.delete_interval > 0:
                    await asyncio.sleep(self.delete_interval)

            remaining = self._remaining(deadline)
            if remaining <= 0:
                raise DrainTimeout(
                    f"{len(blocking)} pod(s) still on node after {self.timeout:g}s: "
                    + ", ".join(f"{p.namespace}/{p.name}" for p in blocking[:5])
                )
            logger.info("Still waiting for %d pod(s) to terminate on node %s", len(blocking), node_name)
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def _remove_pod(self, pod: PodInfo, decision: EvictionDecision, deadline: float) -> bool:
        """
        Issues the delete (or eviction) for one pod. Returns True when the
        request was accepted or the pod is already gone.
        """
        grace = 0 if decision.force_immediate else self.grace_period
        if self.use_eviction_api and self.policy_api is not None:
            try:
                # 429 from the eviction subresource means a disruption budget said no.
                await self._call(
                    lambda: self._evict(pod, grace),
                    deadline,
                    f"evict pod {pod.namespace}/{pod.name}",
                    retry_statuses=TRANSIENT_STATUSES - {429},
                )
                return True
            except ApiException as e:
                if e.status == 404:
                    return True
                if e.status != 429:
                    raise
                if not self.force_on_disruption_block:
                    logger.warning(
                        "Eviction of %s/%s is blocked by a disruption budget; will retry on the next poll.",
                        pod.namespace,
                        pod.name,
                    )
                    return False
                logger.warning("Eviction of %s/%s is blocked; forcing an immediate delete.", pod.namespace, pod.name)
                grace = 0

        logger.info(
            "Deleting pod %s/%s from node %s with a grace period of %d seconds",
            pod.namespace,
            pod.name,
            pod.node_name,
            grace,
        )
        try:
            await self._call(lambda: self._delete(pod, grace), deadline, f"delete pod {pod.namespace}/{pod.name}")
        except ApiException as e:
            if e.status != 404:
                raise
            logger.info("Pod %s/%s already deleted", pod.namespace, pod.name)
        return True

    def _delete(self, pod: PodInfo, grace: int):
        return self.api.delete_namespaced_pod(
            pod.name,
            pod.namespace,
            grace_period_seconds=grace,
            propagation_policy=PROPAGATION_POLICY,
        )

    def _evict(self, pod: PodInfo, grace: int):
        body = client.V1Eviction(
            metadata=client.V1ObjectMeta(name=pod.name, namespace=pod.namespace),
            delete_options=client.V1DeleteOptions(grace_period_seconds=grace, propagation_policy=PROPAGATION_POLICY),
        )
        return self.policy_api.create_namespaced_pod_eviction(pod.name, pod.namespace, body)

    # --- drained -> terminating -> terminated ---

    async def _terminate(
        self, candidate: DrainCandidate, machine: NodeDrainStateMachine, provider_id: Optional[str]
    ) -> Optional[str]:
        try:
            instance_id = candidate.instance_id or resolve_instance_id(provider_id)
        except InstanceIdentityError as e:
            machine.fail(FailureReason.IDENTITY_UNRESOLVABLE, str(e))
            return None

        if self.settle_seconds > 0:
            logger.info("Waiting %gs before terminating node %s", self.settle_seconds, candidate.node_name)
            await asyncio.sleep(self.settle_seconds)
            # The drained listing is stale after the wait; look again before anything is destroyed.
            loop = asyncio.get_running_loop()
            recheck_deadline = loop.time() + self.api_timeout
            pods = await self._call(
                lambda: self.pod_collector.list_pods_on_node(candidate.node_name),
                recheck_deadline,
                f"re-list pods on {candidate.node_name}",
                budget=self.api_timeout,
            )
            leftover = [pod for pod in pods if self.eviction_filter.blocks_termination(pod)]
            if leftover:
                machine.fail(
                    FailureReason.EVICTION_FAILED,
                    f"{len(leftover)} pod(s) appeared on the node after it was drained",
                )
                return instance_id

        machine.advance(DrainState.TERMINATING)
        try:
            await self.terminator.terminate(instance_id)
        except TerminationError as e:
            machine.fail(FailureReason.TERMINATION_FAILED, str(e))
            return instance_id

        machine.advance(DrainState.TERMINATED)
        return instance_id
