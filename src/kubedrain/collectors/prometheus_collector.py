# src/kubedrain/collectors/prometheus_collector.py

"""
PrometheusCollector runs node utilization queries and turns the resulting
instant vector into UtilizationSample objects. This is the metrics source
the drain selector works from.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

import httpx

from kubedrain.collectors.base_collector import BaseCollector
from kubedrain.core.config import Config
from kubedrain.core.exceptions import MetricsQueryError
from kubedrain.models.metrics import UtilizationSample
from kubedrain.utils.http_client import get_async_http_client

# Set up logging
logger = logging.getLogger(__name__)


def _format_threshold(threshold: float) -> str:
    # 70.0 -> "70", 72.5 -> "72.5"
    return f"{threshold:g}"


def disk_usage_query(threshold: float) -> str:
    """Filesystems whose used fraction, as a percentage, is above the threshold."""
    return f"(1 - node_filesystem_avail_bytes / node_filesystem_size_bytes) * 100 > {_format_threshold(threshold)}"


def memory_usage_query(threshold: float) -> str:
    """Nodes whose memory in use, as a percentage, is below the threshold."""
    return (
        "100 * (1 - (node_memory_MemFree_bytes + node_memory_Cached_bytes + node_memory_Buffers_bytes) "
        f"/ node_memory_MemTotal_bytes) < {_format_threshold(threshold)}"
    )


QUERY_BUILDERS = {
    "disk": disk_usage_query,
    "memory": memory_usage_query,
}


def build_query(resource: str, threshold: float) -> str:
    try:
        builder = QUERY_BUILDERS[resource]
    except KeyError:
        raise ValueError(f"Unsupported resource '{resource}'. Use one of: {', '.join(QUERY_BUILDERS)}")
    return builder(threshold)


class PrometheusCollector(BaseCollector):
    """
    Queries Prometheus for node utilization samples.
    """

    def __init__(self, settings: Config, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.base_url = settings.PROMETHEUS_URL
        self.timeout = settings.PROMETHEUS_QUERY_TIMEOUT_SECONDS
        self.identity_mode = settings.PROMETHEUS_IDENTITY_MODE
        self.identity_label = settings.PROMETHEUS_IDENTITY_LABEL

        # TLS verify and auth support
        self.verify = getattr(settings, "PROMETHEUS_VERIFY_CERTS", True)
        self.bearer_token = getattr(settings, "PROMETHEUS_BEARER_TOKEN", None)
        self.username = getattr(settings, "PROMETHEUS_USERNAME", None)
        self.password = getattr(settings, "PROMETHEUS_PASSWORD", None)
        self.scope_org_id = getattr(settings, "PROMETHEUS_SCOPE_ORG_ID", None)

        self._client = http_client

    def _headers(self) -> Dict[str, str]:
        headers = {}
        if self.bearer_token:
            headers["Authorization"] = f"Bearer {self.bearer_token}"
        if self.scope_org_id:
            headers["X-Scope-OrgID"] = self.scope_org_id
        return headers

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = get_async_http_client(read_timeout=self.timeout, verify=self.verify)
        return self._client

    async def collect(
        self, resource: Optional[str] = None, threshold: Optional[float] = None
    ) -> Set[UtilizationSample]:
        """
        Runs the configured resource query with the configured (or given) threshold.
        """
        resource = resource or self.settings.DRAIN_RESOURCE
        threshold = self.settings.DRAIN_THRESHOLD_PERCENTAGE if threshold is None else threshold
        return await self.query(build_query(resource, threshold))

    async def query(self, expression: str, timeout: Optional[float] = None) -> Set[UtilizationSample]:
        """
        Runs an instant query and returns the samples it produced.

        The timeout is a hard deadline for the whole exchange. Every failure,
        including a result that is not an instant vector, raises
        MetricsQueryError; retrying is left to the caller.
        """
        timeout = timeout or self.timeout
        try:
            data = await asyncio.wait_for(self._fetch(expression), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise MetricsQueryError(f"Prometheus query timed out after {timeout}s: {expression}") from e

        if data.get("status") != "success":
            raise MetricsQueryError(
                f"Prometheus returned non-success status: {data.get('errorType', '')} {data.get('error', 'Unknown')}"
            )

        for warning in data.get("warnings") or []:
            logger.warning("Prometheus query warning: %s", warning)

        payload = data.get("data") or {}
        result_type = payload.get("resultType")
        if result_type != "vector":
            raise MetricsQueryError(f"Unexpected result type from Prometheus: {result_type!r} (expected 'vector')")

        return self._parse_vector(payload.get("result") or [])

    async def _fetch(self, expression: str) -> Dict[str, Any]:
        if not self.base_url:
            raise MetricsQueryError("PROMETHEUS_URL is not set.")

        query_url = f"{self.base_url.rstrip('/')}/api/v1/query"
        auth = None
        if self.username and self.password:
            auth = (self.username, self.password)

        client = self._ensure_client()
        try:
            logger.info("Querying Prometheus at %s: %s", query_url, expression)
            response = await client.get(query_url, params={"query": expression}, headers=self._headers(), auth=auth)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise MetricsQueryError(f"Prometheus at {query_url} answered HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise MetricsQueryError(f"Failed to query Prometheus at {query_url}: {e}") from e
        except ValueError as e:
            raise MetricsQueryError(f"Prometheus at {query_url} returned invalid JSON: {e}") from e

    def extract_identity(self, label_value: str) -> str:
        """
        Derives the node identity from a metric label value.

        In 'address' mode "10.0.1.7:9100" becomes "10.0.1.7"; a value without a
        port is used unchanged. In 'node_label' mode the value is used as-is.
        """
        if self.identity_mode == "address":
            return label_value.split(":", 1)[0]
        return label_value

    def _parse_vector(self, results) -> Set[UtilizationSample]:
        samples: Set[UtilizationSample] = set()
        malformed_count = 0
        malformed_examples = []

        for item in results:
            parsed = self._parse_sample(item)
            if parsed:
                samples.add(parsed)
            else:
                malformed_count += 1
                if len(malformed_examples) < 3:
                    malformed_examples.append(item)

        if malformed_count:
            logger.warning(
                "Skipped %d malformed utilization sample(s). Examples: %s",
                malformed_count,
                malformed_examples,
            )

        logger.info("Prometheus returned %d utilization sample(s)", len(samples))
        return samples

    def _parse_sample(self, item: Dict[str, Any]) -> Optional[UtilizationSample]:
        """
        Parses a single item from the vector result.
        Returns a UtilizationSample or None if the item cannot be used.
        """
        metric = item.get("metric") or {}
        # Value is an array like [<timestamp>, "<value>"]. We take the string value.
        value = item.get("value") or [None, None]
        value_str = value[1] if len(value) > 1 else None
        label_value = metric.get(self.identity_label)

        if not label_value or value_str is None or value_str == "NaN":
            return None

        identity = self.extract_identity(label_value)
        if not identity:
            return None

        try:
            return UtilizationSample(node_identity=identity, value=float(value_str))
        except (TypeError, ValueError):
            return None

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None
