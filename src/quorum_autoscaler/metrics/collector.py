"""
Metrics Collector
Gathers per-tier workload signals for one cluster concurrently.

Features:
- One fetch task per distinct (tier, source) pair, run on a bounded worker pool
- Individual timeout and circuit breaker around every fetch
- Single-flight: concurrent callers for the same cluster share one collection
- Short-lived cache of complete snapshots
- Partial failure tolerance: failed sources mark the snapshot degraded; only a
  tier whose every source failed makes the call raise MetricsUnavailableError
"""
from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from ..core.config import settings
from ..core.constants import MAX_FETCH_WORKERS, MIN_FETCH_WORKERS, Tier
from ..core.exceptions import MetricSourceError, MetricsUnavailableError
from ..core.logging import get_logger, get_logger_with_context
from ..domain.models import ClusterMetrics, ClusterRef
from ..domain.spec import MetricSpec
from ..resilience.circuit_breaker import CircuitBreakerRegistry
from .sources import MemberProbeSource, MetricSource, PrometheusQuerySource

if TYPE_CHECKING:
    from ..monitoring.metrics import AutoscalerMetrics

logger = get_logger(__name__)


@dataclass(frozen=True)
class FetchGroup:
    """Specs of one tier served by a single fetch task."""
    tier: Tier
    source: str
    label: str
    specs: tuple[MetricSpec, ...]


@dataclass
class FetchOutcome:
    group: FetchGroup
    values: dict[str, float] = field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class _CacheEntry:
    fingerprint: tuple
    metrics: ClusterMetrics
    expires_at: float


def _fingerprint(specs: Mapping[Tier, Sequence[MetricSpec]]) -> tuple:
    return tuple(sorted(
        (tier.value, spec.key, spec.source_name)
        for tier, tier_specs in specs.items()
        for spec in tier_specs
    ))


class MetricsCollector:
    """
    Collects ClusterMetrics for clusters.

    Construct once per controller process; cache, in-flight map and breakers
    are instance state keyed by cluster.
    """

    def __init__(
        self,
        sources: Mapping[str, MetricSource] | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        workers: int | None = None,
        fetch_timeout: float | None = None,
        cache_ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        observer: AutoscalerMetrics | None = None,
    ):
        if sources is None:
            sources = {
                MemberProbeSource.name: MemberProbeSource(),
                PrometheusQuerySource.name: PrometheusQuerySource(),
            }
        self.sources = dict(sources)
        self.breakers = breakers or CircuitBreakerRegistry(clock=clock)
        self.workers = min(max(workers or settings.fetch_workers, MIN_FETCH_WORKERS), MAX_FETCH_WORKERS)
        self.fetch_timeout = fetch_timeout or settings.fetch_timeout_seconds
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.metrics_cache_ttl_seconds
        self.observer = observer
        self._clock = clock

        self._cache: dict[str, _CacheEntry] = {}
        # keyed by (cluster key, spec fingerprint)
        self._inflight: dict[tuple, asyncio.Task] = {}
        self._waiters: dict[tuple, int] = defaultdict(int)
        self._cluster_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, cluster_key: str) -> asyncio.Lock:
        return self._cluster_locks.setdefault(cluster_key, asyncio.Lock())

    async def collect(self, cluster: ClusterRef, specs: Mapping[Tier, Sequence[MetricSpec]]) -> ClusterMetrics:
        """
        Collect metrics for ``cluster``.

        Raises:
            MetricsUnavailableError: every source of at least one tier failed;
                ``partial`` holds what was collected
        """
        key = cluster.key
        fingerprint = _fingerprint(specs)

        async with self._lock_for(key):
            cached = self._cache.get(key)
            if cached and cached.fingerprint == fingerprint and cached.expires_at > self._clock():
                logger.debug(f"Cache hit for cluster metrics: {key}")
                return cached.metrics

            flight = (key, fingerprint)
            task = self._inflight.get(flight)
            if task is None:
                task = asyncio.ensure_future(self._collect(cluster, specs, fingerprint))
                self._inflight[flight] = task
                task.add_done_callback(lambda done, f=flight: self._landed(f, done))
            self._waiters[flight] += 1

        try:
            return await asyncio.shield(task)
        finally:
            self._waiters[flight] -= 1
            if self._waiters[flight] <= 0:
                self._waiters.pop(flight, None)
                # last waiter gone: abandon the fetches
                if not task.done():
                    task.cancel()

    def _landed(self, flight: tuple, task: asyncio.Task) -> None:
        if self._inflight.get(flight) is task:
            del self._inflight[flight]
        if not task.cancelled():
            # retrieve the exception so an unawaited failure is not reported
            task.exception()

    def invalidate(self, cluster: ClusterRef) -> None:
        self._cache.pop(cluster.key, None)

    def forget(self, cluster: ClusterRef) -> None:
        """Drop every piece of per-cluster state, e.g. after the cluster was deleted."""
        key = cluster.key
        self._cache.pop(key, None)
        self._cluster_locks.pop(key, None)
        for flight in [f for f in self._inflight if f[0] == key]:
            self._inflight.pop(flight).cancel()
        self.breakers.forget(key)

    def _group(self, specs: Mapping[Tier, Sequence[MetricSpec]]) -> list[FetchGroup]:
        groups: list[FetchGroup] = []
        for tier, tier_specs in specs.items():
            by_source: dict[str, list[MetricSpec]] = defaultdict(list)
            for spec in tier_specs:
                by_source[spec.source_name].append(spec)

            for source_name, source_specs in by_source.items():
                source = self.sources.get(source_name)
                if source is not None and not source.batches_specs:
                    groups.extend(
                        FetchGroup(tier, source_name, f"{tier.value}/{source_name}:{spec.key}", (spec,))
                        for spec in source_specs
                    )
                else:
                    groups.append(
                        FetchGroup(tier, source_name, f"{tier.value}/{source_name}", tuple(source_specs))
                    )
        return groups

    async def _collect(
        self,
        cluster: ClusterRef,
        specs: Mapping[Tier, Sequence[MetricSpec]],
        fingerprint: tuple,
    ) -> ClusterMetrics:
        groups = self._group(specs)
        semaphore = asyncio.Semaphore(self.workers)
        outcomes = await asyncio.gather(*(self._fetch(semaphore, cluster, g) for g in groups))

        metrics = ClusterMetrics(collected_at=datetime.now(timezone.utc))
        attempted: dict[Tier, int] = defaultdict(int)
        failed: dict[Tier, int] = defaultdict(int)

        for outcome in outcomes:
            tier = outcome.group.tier
            attempted[tier] += 1
            if not outcome.ok:
                failed[tier] += 1
                metrics.degraded = True
                metrics.failed_sources.append(outcome.group.label)
                continue

            snapshot = metrics.for_tier(tier)
            for metric_key, value in outcome.values.items():
                snapshot.set(metric_key, value)
            if any(spec.key not in outcome.values for spec in outcome.group.specs):
                metrics.degraded = True

        unavailable = [tier for tier, count in attempted.items() if count and failed[tier] == count]
        if unavailable:
            names = [tier.value for tier in unavailable]
            logger.warning(f"Metrics unavailable for {cluster.key} tiers {names}")
            raise MetricsUnavailableError(
                f"all metric sources failed for {', '.join(names)}",
                tiers=names,
                partial=metrics,
            )

        if metrics.degraded:
            logger.warning(
                f"Degraded metrics for {cluster.key}: failed sources {metrics.failed_sources}"
            )
        else:
            self._cache[cluster.key] = _CacheEntry(
                fingerprint=fingerprint,
                metrics=metrics,
                expires_at=self._clock() + self.cache_ttl,
            )
        return metrics

    async def _fetch(self, semaphore: asyncio.Semaphore, cluster: ClusterRef, group: FetchGroup) -> FetchOutcome:
        source = self.sources.get(group.source)
        if source is None:
            return self._failed(cluster, group, f"unknown metric source '{group.source}'")

        breaker = self.breakers.get(cluster.key, group.label)
        async with semaphore:
            if not breaker.allow():
                return self._failed(cluster, group, "circuit open")
            try:
                values = await asyncio.wait_for(
                    source.fetch(cluster, group.tier, group.specs),
                    timeout=self.fetch_timeout,
                )
            except asyncio.TimeoutError:
                breaker.record_failure()
                return self._failed(cluster, group, f"timed out after {self.fetch_timeout}s")
            except MetricSourceError as e:
                breaker.record_failure()
                return self._failed(cluster, group, e.message)
            except asyncio.CancelledError:
                # an abandoned probe counts as failed so a half-open breaker re-opens
                breaker.record_failure()
                raise
            except Exception as e:
                breaker.record_failure()
                get_logger_with_context(__name__, cluster, group.tier).error(
                    f"Unexpected error from source {group.label}: {e}", exc_info=True, extra={"source": group.source},
                )
                return self._failed(cluster, group, str(e))

        breaker.record_success()
        return FetchOutcome(group=group, values=values)

    def _failed(self, cluster: ClusterRef, group: FetchGroup, error: str) -> FetchOutcome:
        get_logger_with_context(__name__, cluster, group.tier).warning(
            f"Metric source {group.label} failed: {error}", extra={"source": group.source},
        )
        if self.observer is not None:
            self.observer.record_source_failure(cluster, group.label)
        return FetchOutcome(group=group, error=error)

    async def close(self) -> None:
        """Close HTTP sessions owned by the sources."""
        for source in self.sources.values():
            await source.close()
