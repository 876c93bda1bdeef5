"""
Pytest Configuration and Fixtures
Provides shared fixtures and fakes for the autoscaler tests.
"""
import asyncio
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import CollectorRegistry

from quorum_autoscaler.core.constants import Tier
from quorum_autoscaler.core.exceptions import MetricSourceError
from quorum_autoscaler.domain import AutoScalingSpec, ClusterRef, ClusterState, MetricSpec, TierSpec
from quorum_autoscaler.metrics.sources import MetricSource
from quorum_autoscaler.monitoring import AutoscalerMetrics


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
    config.addinivalue_line(
        "markers", "resilience: mark test as resilience test"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        if "integration" in item.nodeid.lower():
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


class FakeClock:
    """Manually advanced wall clock for cooldown and window tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeMonotonic:
    """Manually advanced monotonic clock for cache and breaker tests."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class StaticSource(MetricSource):
    """Metric source answering from a per-tier table, optionally failing."""

    def __init__(self, name: str, values: dict[Tier, dict[str, float]] | None = None, batches: bool = True):
        self.name = name
        self.values = values or {}
        self.batches = batches
        self.calls = 0
        self.fail_tiers: set[Tier] = set()
        self.delay: float = 0.0

    @property
    def batches_specs(self) -> bool:
        return self.batches

    async def fetch(self, cluster: ClusterRef, tier: Tier, specs: Sequence[MetricSpec]) -> dict[str, float]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if tier in self.fail_tiers:
            raise MetricSourceError(f"{self.name} down for {tier.value}", source=self.name)
        table = self.values.get(tier, {})
        return {spec.key: table[spec.key] for spec in specs if spec.key in table}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def cluster() -> ClusterRef:
    return ClusterRef(
        name="graph",
        namespace="db",
        members={
            Tier.PRIMARY: ["http://graph-primary-0:2004", "http://graph-primary-1:2004", "http://graph-primary-2:2004"],
            Tier.SECONDARY: ["http://graph-secondary-0:2004", "http://graph-secondary-1:2004"],
        },
    )


@pytest.fixture
def primary_spec() -> TierSpec:
    return TierSpec(
        min_replicas=3,
        max_replicas=7,
        metrics=[MetricSpec(kind="cpu", target="70")],
    )


@pytest.fixture
def secondary_spec() -> TierSpec:
    return TierSpec(
        min_replicas=2,
        max_replicas=10,
        metrics=[MetricSpec(kind="cpu", target="70")],
    )


@pytest.fixture
def autoscaling_spec() -> AutoScalingSpec:
    return AutoScalingSpec.model_validate({
        "enabled": True,
        "primaries": {
            "minReplicas": 3,
            "maxReplicas": 7,
            "metrics": [{"type": "cpu", "target": "70"}],
        },
        "secondaries": {
            "minReplicas": 2,
            "maxReplicas": 10,
            "metrics": [{"type": "cpu", "target": "70"}],
        },
        "quorumProtection": {"minHealthyPrimaries": 2},
    })


@pytest.fixture
def cluster_state() -> ClusterState:
    return ClusterState(
        current_replicas={Tier.PRIMARY: 3, Tier.SECONDARY: 4},
        healthy_primaries=3,
    )


@pytest.fixture
def observer() -> AutoscalerMetrics:
    return AutoscalerMetrics(CollectorRegistry())
