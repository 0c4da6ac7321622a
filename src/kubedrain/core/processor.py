# src/kubedrain/core/processor.py
"""
DrainProcessor is the invocation surface of KubeDrain. It strings the
components together for one run:

    metrics query -> node inventory -> selection -> (dry run stops here) -> drain

Run-level failures (the metrics query or the node listing) raise before any
node is touched. Once draining starts, failures are per node and reported in
the DrainReport outcomes.
"""

import asyncio
import logging
from typing import List, Optional

import aiohttp
from kubernetes_asyncio.client.rest import ApiException

from ..collectors.node_collector import NodeCollector
from ..collectors.pod_collector import PodCollector
from ..collectors.prometheus_collector import PrometheusCollector, build_query
from ..models.drain import DrainReport
from ..models.metrics import UtilizationSample
from .config import Config
from .exceptions import PodInventoryError
from .orchestrator import DrainOrchestrator
from .selector import NodeSelector

logger = logging.getLogger(__name__)


class DrainProcessor:
    """
    Orchestrates one drain run, plus the smaller maintenance tasks that share
    the same clients.
    """

    def __init__(
        self,
        settings: Config,
        metrics_source: PrometheusCollector,
        node_collector: NodeCollector,
        selector: NodeSelector,
        orchestrator: DrainOrchestrator,
        pod_collector: Optional[PodCollector] = None,
        api=None,
    ):
        self.settings = settings
        self.metrics_source = metrics_source
        self.node_collector = node_collector
        self.selector = selector
        self.orchestrator = orchestrator
        self.pod_collector = pod_collector
        self.api = api

    def _resolve(self, threshold: Optional[float], resource: Optional[str]):
        threshold = self.settings.DRAIN_THRESHOLD_PERCENTAGE if threshold is None else float(threshold)
        resource = (resource or self.settings.DRAIN_RESOURCE).lower()
        return threshold, resource

    async def usage(self, threshold: Optional[float] = None, resource: Optional[str] = None) -> List[UtilizationSample]:
        """Returns the utilization samples matching the threshold, highest first."""
        threshold, resource = self._resolve(threshold, resource)
        samples = await self.metrics_source.query(build_query(resource, threshold))
        return sorted(samples, key=lambda s: s.value, reverse=True)

    async def run_drain(
        self,
        threshold: Optional[float] = None,
        dry_run: bool = False,
        resource: Optional[str] = None,
    ) -> DrainReport:
        """
        Selects drain candidates and, unless ``dry_run``, drains them.

        Raises:
            MetricsQueryError: the utilization query failed; nothing was touched.
            NodeInventoryError: the node listing failed; nothing was touched.
        """
        threshold, resource = self._resolve(threshold, resource)
        logger.info(
            "--- Starting %s run (resource=%s, threshold=%g) ---",
            "dry" if dry_run else "drain",
            resource,
            threshold,
        )

        samples = await self.metrics_source.query(build_query(resource, threshold))
        inventory = await self.node_collector.collect()

        candidates = self.selector.select(
            samples,
            inventory,
            self.settings.DRAIN_NODE_LABELS,
            order=not dry_run,
        )
        report = DrainReport(
            resource=resource,
            threshold=threshold,
            dry_run=dry_run,
            samples=sorted(samples, key=lambda s: s.value, reverse=True),
            candidates=candidates,
        )

        if dry_run:
            logger.info("Dry run mode enabled; %d candidate(s) reported, nothing drained.", len(candidates))
            return report

        if not candidates:
            logger.info("No drain candidates found.")
            return report

        report.outcomes = await self.orchestrator.drain(candidates)
        logger.info(
            "--- Finished drain run: %d terminated, %d failed ---",
            sum(1 for o in report.outcomes if o.succeeded),
            len(report.failed),
        )
        return report

    async def cleanup_evicted_pods(self) -> List[str]:
        """
        Deletes pods left in phase Failed with reason 'Evicted', outside the
        critical namespaces. Returns the names of the deleted pods.

        Raises:
            PodInventoryError: the evicted pods could not be listed.
        """
        critical = set(self.settings.CRITICAL_NAMESPACES)
        api_timeout = self.settings.K8S_API_TIMEOUT_SECONDS
        try:
            evicted = await asyncio.wait_for(self.pod_collector.list_evicted_pods(), timeout=api_timeout)
        except ApiException as e:
            raise PodInventoryError(f"Kubernetes API error while listing evicted pods: {e.status} {e.reason}") from e
        except asyncio.TimeoutError as e:
            raise PodInventoryError(f"Listing evicted pods timed out after {api_timeout:g}s") from e
        except aiohttp.ClientError as e:
            raise PodInventoryError(f"Failed to reach the Kubernetes API while listing evicted pods: {e}") from e

        deleted = []
        for pod in evicted:
            if pod.namespace in critical:
                continue
            logger.info(f"Evicted Pod: {pod.namespace}/{pod.name}")
            try:
                await asyncio.wait_for(self.api.delete_namespaced_pod(pod.name, pod.namespace), timeout=api_timeout)
                deleted.append(pod.name)
            except ApiException as e:
                if e.status == 404:
                    deleted.append(pod.name)
                else:
                    logger.error(f"Error deleting pod {pod.namespace}/{pod.name}: {e.status} {e.reason}")
            except asyncio.TimeoutError:
                logger.error(f"Deleting pod {pod.namespace}/{pod.name} timed out after {api_timeout:g}s")
            except aiohttp.ClientError as e:
                logger.error(f"Error deleting pod {pod.namespace}/{pod.name}: {e}")
            if self.settings.DRAIN_DELETE_INTERVAL_SECONDS > 0:
                await asyncio.sleep(self.settings.DRAIN_DELETE_INTERVAL_SECONDS)

        logger.info(f"Deleted {len(deleted)} evicted pod(s).")
        return deleted

    async def close(self):
        await self.metrics_source.close()
        if self.api is not None:
            await self.api.api_client.close()
            self.api = None
