"""
Integration Tests for the AutoScaler
Tests full reconciliation cycles with fake metric sources and a mocked webhook.
"""
import asyncio
from datetime import timedelta
from unittest.mock import Mock

import pytest
from aiohttp import test_utils, web

from quorum_autoscaler.core.constants import COOLDOWN_REASON, ZONE_PLAN_INFEASIBLE, Tier
from quorum_autoscaler.core.exceptions import WebhookError, WebhookTimeoutError
from quorum_autoscaler.domain import AutoScalingSpec, ClusterState, DecisionSource, ScalingAction
from quorum_autoscaler.metrics import MetricsCollector
from quorum_autoscaler.resilience import CircuitBreakerConfig, CircuitBreakerRegistry
from quorum_autoscaler.scaling import AutoScaler, DecisionEngine, ScalingHistoryStore, WebhookClient, WebhookResponse
from tests.conftest import FakeClock, FakeMonotonic, StaticSource


def spec_with(**overrides) -> AutoScalingSpec:
    doc = {
        "enabled": True,
        "primaries": {"minReplicas": 3, "maxReplicas": 7, "metrics": [{"type": "cpu", "target": "70"}]},
        "secondaries": {"minReplicas": 2, "maxReplicas": 10, "metrics": [{"type": "cpu", "target": "70"}]},
        "quorumProtection": {"minHealthyPrimaries": 2},
    }
    doc.update(overrides)
    return AutoScalingSpec.model_validate(doc)


class TestAutoScaler:
    """Test reconciliation cycles."""

    @pytest.fixture(autouse=True)
    def _setup(self, observer):
        self.clock = FakeClock()
        self.monotonic = FakeMonotonic()
        self.members = StaticSource("members", {
            Tier.PRIMARY: {"cpu": 70.0},
            Tier.SECONDARY: {"cpu": 70.0},
        })
        self.observer = observer
        self.webhook = Mock(spec=WebhookClient)
        self.autoscaler = AutoScaler(
            collector=MetricsCollector(
                sources={"members": self.members},
                breakers=CircuitBreakerRegistry(CircuitBreakerConfig(), clock=self.monotonic),
                fetch_timeout=5.0,
                cache_ttl=30.0,
                clock=self.monotonic,
                observer=observer,
            ),
            engine=DecisionEngine(
                history=ScalingHistoryStore(maxlen=100, retention=timedelta(hours=1)),
                clock=self.clock,
                observer=observer,
            ),
            webhook=self.webhook,
            observer=observer,
            deadline=5.0,
        )
        self.state = ClusterState(
            current_replicas={Tier.PRIMARY: 3, Tier.SECONDARY: 4},
            healthy_primaries=3,
        )

    def sample(self, name: str, **labels) -> float | None:
        return self.observer.registry.get_sample_value(
            f"neo4j_operator_{name}", {"cluster_name": "graph", "namespace": "db", **labels},
        )

    @pytest.mark.asyncio
    async def test_primary_scale_up_to_odd(self, cluster):
        """Test primaries at 3 with cpu 85 against 70 scale to 5."""
        self.members.values[Tier.PRIMARY]["cpu"] = 85.0

        recommendation = await self.autoscaler.reconcile(cluster, spec_with(), self.state)

        assert recommendation.cluster == "db/graph"
        assert recommendation.primary.action == ScalingAction.SCALE_UP
        assert recommendation.primary.target_replicas == 5
        assert recommendation.secondary.action == ScalingAction.NONE
        assert self.sample("autoscaler_desired_replicas", tier="primaries") == 5
        assert self.sample("scale_events_total", tier="primaries", direction="up") == 1
        assert self.sample("autoscaler_enabled") == 1

    @pytest.mark.asyncio
    async def test_disabled_holds_everything(self, cluster):
        recommendation = await self.autoscaler.reconcile(cluster, spec_with(enabled=False), self.state)

        assert all(d.action == ScalingAction.NONE for d in recommendation.decisions.values())
        assert recommendation.primary.reason == "autoscaling disabled"
        assert self.members.calls == 0
        assert self.sample("autoscaler_enabled") == 0

    @pytest.mark.asyncio
    async def test_unavailable_tier_is_held(self, cluster):
        """Test that a tier with no metrics holds while the other still decides."""
        self.members.fail_tiers.add(Tier.PRIMARY)
        self.members.values[Tier.SECONDARY]["cpu"] = 140.0

        recommendation = await self.autoscaler.reconcile(cluster, spec_with(), self.state)

        assert recommendation.primary.action == ScalingAction.NONE
        assert recommendation.primary.reason == "metrics unavailable"
        assert recommendation.secondary.action == ScalingAction.SCALE_UP
        assert recommendation.metrics_degraded is True

    @pytest.mark.asyncio
    async def test_deadline_returns_holds(self, cluster):
        """Test that an expired cycle deadline holds every tier."""
        self.members.delay = 1.0
        self.autoscaler.deadline = 0.05

        recommendation = await self.autoscaler.reconcile(cluster, spec_with(), self.state)

        assert all(d.action == ScalingAction.NONE for d in recommendation.decisions.values())
        assert "deadline" in recommendation.secondary.reason
        assert recommendation.metrics_degraded is True

    @pytest.mark.asyncio
    async def test_webhook_proposal_adopted(self, cluster):
        """Test that a more confident webhook proposal for secondaries is adopted."""
        self.webhook.call.return_value = WebhookResponse.model_validate({
            "action": "ScaleUp",
            "target_replicas": {"secondaries": 6},
            "reason": "forecast",
            "confidence": 0.9,
        })
        spec = spec_with(webhook={"url": "http://algo.local/scale"})

        recommendation = await self.autoscaler.reconcile(cluster, spec, self.state)

        assert recommendation.secondary.target_replicas == 6
        assert recommendation.secondary.source == DecisionSource.WEBHOOK
        assert recommendation.primary.action == ScalingAction.NONE
        assert self.sample("autoscaler_webhook_requests_total", result="success") == 1

    @pytest.mark.asyncio
    async def test_webhook_timeout_falls_back(self, cluster):
        """Test that a webhook timeout leaves the internal decision in place."""
        self.webhook.call.side_effect = WebhookTimeoutError("webhook did not answer within 5s")
        spec = spec_with(webhook={"url": "http://algo.local/scale"})

        recommendation = await self.autoscaler.reconcile(cluster, spec, self.state)

        assert recommendation.secondary.action == ScalingAction.NONE
        assert recommendation.secondary.target_replicas == 4
        assert recommendation.secondary.source == DecisionSource.INTERNAL
        assert self.sample("autoscaler_webhook_requests_total", result="timeout") == 1

    @pytest.mark.asyncio
    async def test_webhook_error_falls_back(self, cluster):
        self.webhook.call.side_effect = WebhookError("webhook returned HTTP 500")
        spec = spec_with(webhook={"url": "http://algo.local/scale"})

        recommendation = await self.autoscaler.reconcile(cluster, spec, self.state)

        assert recommendation.secondary.source == DecisionSource.INTERNAL
        assert self.sample("autoscaler_webhook_requests_total", result="error") == 1

    @pytest.mark.asyncio
    async def test_webhook_skipped_during_cooldown(self, cluster):
        self.webhook.call.return_value = WebhookResponse()
        spec = spec_with(webhook={"url": "http://algo.local/scale"})

        await self.autoscaler.reconcile(cluster, spec, self.state)
        self.clock.advance(10)
        recommendation = await self.autoscaler.reconcile(cluster, spec, self.state)

        assert self.webhook.call.call_count == 1
        assert recommendation.primary.reason == COOLDOWN_REASON

    @pytest.mark.asyncio
    async def test_overlapping_cycles_are_serialized(self, cluster):
        """Test that concurrent cycles for one cluster run one after the other."""
        self.members.delay = 0.02

        first, second = await asyncio.gather(
            self.autoscaler.reconcile(cluster, spec_with(), self.state),
            self.autoscaler.reconcile(cluster, spec_with(), self.state),
        )

        reasons = {first.primary.reason, second.primary.reason}
        assert COOLDOWN_REASON in reasons
        assert len(reasons) == 2

    @pytest.mark.asyncio
    async def test_zone_plan_uses_available_zones(self, cluster):
        spec = spec_with(zoneAware={"enabled": True, "zones": ["a", "b", "c"], "minReplicasPerZone": 1})
        state = ClusterState(
            current_replicas={Tier.PRIMARY: 3, Tier.SECONDARY: 4},
            healthy_primaries=3,
            available_zones=["a", "b"],
        )

        recommendation = await self.autoscaler.reconcile(cluster, spec, state)

        assert recommendation.zone_plan.to_dict() == {"a": 2, "b": 2}
        assert recommendation.zone_plan.total == recommendation.secondary.target_replicas

    @pytest.mark.asyncio
    async def test_infeasible_zone_plan_noted_in_reason(self, cluster):
        spec = spec_with(zoneAware={"enabled": True, "zones": ["a", "b", "c"], "minReplicasPerZone": 2})

        recommendation = await self.autoscaler.reconcile(cluster, spec, self.state)

        assert ZONE_PLAN_INFEASIBLE in recommendation.secondary.reason
        assert recommendation.zone_plan.total == 4
        assert self.sample("autoscaler_validation_outcomes_total", check="zone_plan", outcome="relaxed") == 1

    @pytest.mark.asyncio
    async def test_scaling_stats(self, cluster):
        self.members.values[Tier.PRIMARY]["cpu"] = 85.0
        await self.autoscaler.reconcile(cluster, spec_with(), self.state)

        stats = self.autoscaler.get_scaling_stats(cluster)

        assert stats["cluster"] == "db/graph"
        assert stats["tiers"]["primaries"]["scale_ups"] == 1
        assert stats["tiers"]["secondaries"]["decisions"] == 1
        assert len(stats["recent_decisions"]) == 2
        assert stats["circuit_breakers"] == {"primaries/members": "closed", "secondaries/members": "closed"}

    @pytest.mark.asyncio
    async def test_forget_releases_cluster_state(self, cluster):
        await self.autoscaler.reconcile(cluster, spec_with(), self.state)

        self.autoscaler.forget(cluster)
        stats = self.autoscaler.get_scaling_stats(cluster)

        assert stats["recent_decisions"] == []
        assert stats["circuit_breakers"] == {}

        # a fresh cycle is not held by the forgotten cooldown
        recommendation = await self.autoscaler.reconcile(cluster, spec_with(), self.state)
        assert recommendation.primary.reason != COOLDOWN_REASON

    @pytest.mark.asyncio
    async def test_close(self, cluster):
        await self.autoscaler.close()
        self.webhook.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_webhook_timeout_bounded_by_cycle_deadline(self, cluster):
        self.webhook.call.return_value = WebhookResponse()
        spec = spec_with(webhook={"url": "http://algo.local/scale", "timeout": "30s"})

        await self.autoscaler.reconcile(cluster, spec, self.state)

        budget = self.webhook.call.call_args.kwargs["timeout"]
        assert 0 < budget < self.autoscaler.deadline


class TestAutoScalerSlowWebhook:
    """Test a webhook slower than the whole cycle deadline against a real server."""

    @pytest.fixture(autouse=True)
    def _setup(self, observer):
        self.observer = observer
        self.members = StaticSource("members", {
            Tier.PRIMARY: {"cpu": 70.0},
            Tier.SECONDARY: {"cpu": 140.0},
        })
        self.autoscaler = AutoScaler(
            collector=MetricsCollector(
                sources={"members": self.members},
                breakers=CircuitBreakerRegistry(CircuitBreakerConfig(), clock=FakeMonotonic()),
                fetch_timeout=5.0,
                cache_ttl=30.0,
                observer=observer,
            ),
            engine=DecisionEngine(
                history=ScalingHistoryStore(maxlen=100, retention=timedelta(hours=1)),
                clock=FakeClock(),
                observer=observer,
            ),
            webhook=WebhookClient(),
            observer=observer,
            deadline=0.3,
        )
        self.state = ClusterState(current_replicas={Tier.PRIMARY: 3, Tier.SECONDARY: 4}, healthy_primaries=3)

    @pytest.mark.asyncio
    async def test_integration_slow_webhook_falls_back_to_internal(self, cluster):
        async def handler(request: web.Request) -> web.Response:
            await asyncio.sleep(1.0)
            return web.json_response({"target_replicas": {"secondaries": 10}, "confidence": 1.0})

        app = web.Application()
        app.router.add_post("/scale", handler)
        server = test_utils.TestServer(app)
        await server.start_server()
        spec = spec_with(webhook={"url": str(server.make_url("/scale")), "timeout": "2s"})
        try:
            recommendation = await self.autoscaler.reconcile(cluster, spec, self.state)
        finally:
            await self.autoscaler.close()
            await server.close()

        assert recommendation.secondary.action == ScalingAction.SCALE_UP
        assert recommendation.secondary.source == DecisionSource.INTERNAL
        assert "deadline" not in recommendation.secondary.reason
        assert recommendation.metrics_degraded is False
        assert self.observer.registry.get_sample_value(
            "neo4j_operator_autoscaler_webhook_requests_total",
            {"cluster_name": "graph", "namespace": "db", "result": "timeout"},
        ) == 1
