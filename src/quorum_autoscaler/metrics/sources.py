"""
Metric sources for the collector.

A source fetches the values of one or more metric specs for one tier of a
cluster and returns them keyed by ``MetricSpec.key``. Sources raise
``MetricSourceError`` on failure; timeouts and circuit breaking are applied
by the collector around every fetch.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

import aiohttp

from ..core.config import settings
from ..core.constants import Tier
from ..core.exceptions import MetricSourceError
from ..core.logging import get_logger
from ..domain.models import BUILTIN_FIELDS, ClusterRef
from ..domain.spec import MetricSpec

logger = get_logger(__name__)


class MetricSource(ABC):
    """Abstract base class for metric sources."""

    name: str = "source"

    @abstractmethod
    async def fetch(self, cluster: ClusterRef, tier: Tier, specs: Sequence[MetricSpec]) -> dict[str, float]:
        """Fetch values for ``specs``; keys are ``MetricSpec.key``."""

    @property
    def batches_specs(self) -> bool:
        """Whether all specs of a tier can share one fetch task."""
        return True

    async def close(self) -> None:
        pass


class HTTPMetricSource(MetricSource):
    """Shared aiohttp session handling."""

    def __init__(self, session: aiohttp.ClientSession | None = None):
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": "quorum-autoscaler/1.0"},
            )
            self._owns_session = True
        return self._session

    async def _get_json(self, url: str, params: dict[str, str] | None = None) -> Any:
        session = await self._get_session()
        try:
            async with session.get(url, params=params) as response:
                response.raise_for_status()
                return await response.json(content_type=None)
        except (aiohttp.ClientError, ValueError) as e:
            raise MetricSourceError(f"request to {url} failed: {e}", source=self.name) from e

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


class MemberProbeSource(HTTPMetricSource):
    """
    Probes every member of a tier for its scaling metrics document and
    averages the built-in fields across the members that answered.

    Expected document::

        {"cpu": 63.0, "memory": 41.5, "query_latency": 12.0,
         "connection_count": 180, "throughput": 950.0}
    """

    name = "members"

    def __init__(self, session: aiohttp.ClientSession | None = None, metrics_path: str | None = None):
        super().__init__(session)
        self.metrics_path = metrics_path or settings.member_metrics_path

    async def fetch(self, cluster: ClusterRef, tier: Tier, specs: Sequence[MetricSpec]) -> dict[str, float]:
        endpoints = list(cluster.members.get(tier, ()))
        if not endpoints:
            raise MetricSourceError(f"no {tier.value} members to probe for {cluster.key}", source=self.name)

        results = await asyncio.gather(
            *(self._get_json(f"{endpoint.rstrip('/')}{self.metrics_path}") for endpoint in endpoints),
            return_exceptions=True,
        )

        documents: list[dict[str, Any]] = []
        for endpoint, result in zip(endpoints, results):
            if isinstance(result, BaseException):
                logger.warning(f"Member probe {endpoint} failed: {result}")
            elif isinstance(result, dict):
                documents.append(result)
            else:
                logger.warning(f"Member probe {endpoint} returned a non-object document")

        if not documents:
            raise MetricSourceError(f"all {len(endpoints)} {tier.value} members failed", source=self.name)

        wanted = {spec.key for spec in specs if spec.key in BUILTIN_FIELDS}
        values: dict[str, float] = {}
        for key in wanted:
            samples = [float(doc[key]) for doc in documents if isinstance(doc.get(key), (int, float))]
            if samples:
                values[key] = sum(samples) / len(samples)
        return values


class PrometheusQuerySource(HTTPMetricSource):
    """Instant PromQL queries for custom metrics, one spec per fetch."""

    name = "prometheus"

    def __init__(self, base_url: str | None = None, session: aiohttp.ClientSession | None = None):
        super().__init__(session)
        self.base_url = (base_url or settings.prometheus_url).rstrip("/")

    @property
    def batches_specs(self) -> bool:
        return False

    async def fetch(self, cluster: ClusterRef, tier: Tier, specs: Sequence[MetricSpec]) -> dict[str, float]:
        values: dict[str, float] = {}
        for spec in specs:
            if not spec.custom_query:
                continue
            values[spec.key] = await self.query(spec.custom_query)
        return values

    async def query(self, query: str) -> float:
        """Execute an instant query and return the first sample value."""
        logger.debug(f"Querying Prometheus: {query}")
        data = await self._get_json(f"{self.base_url}/api/v1/query", params={"query": query})

        if not isinstance(data, dict) or data.get("status") != "success":
            error = data.get("error", "unknown error") if isinstance(data, dict) else "malformed response"
            raise MetricSourceError(f"Prometheus query failed: {error}", source=self.name)

        payload = data.get("data") or {}
        result = payload.get("result")
        try:
            if payload.get("resultType") == "scalar":
                return float(result[1])
            if not result:
                raise MetricSourceError(f"no data returned for query: {query}", source=self.name)
            return float(result[0]["value"][1])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise MetricSourceError(f"unexpected Prometheus result for {query}: {e}", source=self.name) from e
