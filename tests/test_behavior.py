"""
Unit Tests for the Behavior Policy Engine
Tests stabilization windows, step policies and policy selection.
"""
from datetime import datetime, timedelta, timezone

from quorum_autoscaler.core.constants import Tier
from quorum_autoscaler.domain import BehaviorConfig, ScaleDirection, ScalingAction, ScalingHistoryEntry
from quorum_autoscaler.scaling import BehaviorPolicyEngine

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def entry(seconds_ago: float, action: ScalingAction, from_replicas: int, to_replicas: int) -> ScalingHistoryEntry:
    return ScalingHistoryEntry(
        timestamp=NOW - timedelta(seconds=seconds_ago),
        tier=Tier.SECONDARY,
        action=action,
        from_replicas=from_replicas,
        to_replicas=to_replicas,
    )


def behavior(**rules) -> BehaviorConfig:
    return BehaviorConfig.model_validate(rules)


class TestBehaviorPolicyEngine:
    """Test clamping of raw replica deltas."""

    def setup_method(self):
        self.engine = BehaviorPolicyEngine()
        self.defaults = BehaviorConfig()

    def test_zero_delta(self):
        result = self.engine.clamp(0, ScaleDirection.UP, self.defaults, [], 3, NOW)
        assert result.delta == 0
        assert result.suppressed is False

    def test_default_scale_up_most_permissive_policy(self):
        """Test that Max selects the larger of Pods 4 and Percent 100."""
        small = self.engine.clamp(10, ScaleDirection.UP, self.defaults, [], 3, NOW)
        large = self.engine.clamp(12, ScaleDirection.UP, self.defaults, [], 10, NOW)

        assert small.delta == 4
        assert "limited to 4" in small.reason
        assert large.delta == 10

    def test_within_cap_is_unchanged(self):
        result = self.engine.clamp(2, ScaleDirection.UP, self.defaults, [], 3, NOW)
        assert result.delta == 2
        assert result.reason == ""

    def test_min_select_policy(self):
        config = behavior(scaleUp={
            "selectPolicy": "Min",
            "policies": [
                {"type": "Pods", "value": 4, "periodSeconds": 15},
                {"type": "Percent", "value": 100, "periodSeconds": 15},
            ],
        })
        result = self.engine.clamp(10, ScaleDirection.UP, config, [], 3, NOW)
        assert result.delta == 3

    def test_disabled_select_policy(self):
        config = behavior(scaleDown={"selectPolicy": "Disabled"})
        result = self.engine.clamp(-2, ScaleDirection.DOWN, config, [], 5, NOW)

        assert result.delta == 0
        assert result.suppressed is True

    def test_percent_scale_down(self):
        config = behavior(scaleDown={"stabilizationWindowSeconds": 0, "policies": [
            {"type": "Percent", "value": 20, "periodSeconds": 60},
        ]})
        result = self.engine.clamp(-8, ScaleDirection.DOWN, config, [], 10, NOW)
        assert result.delta == -2

    def test_stabilization_suppresses_flip(self):
        """Test that a scale-down right after a scale-up is suppressed."""
        history = [entry(100, ScalingAction.SCALE_UP, 3, 5)]
        result = self.engine.clamp(-2, ScaleDirection.DOWN, self.defaults, history, 5, NOW)

        assert result.delta == 0
        assert result.suppressed is True
        assert "stabilization" in result.reason

    def test_stabilization_window_expired(self):
        history = [entry(400, ScalingAction.SCALE_UP, 3, 5)]
        result = self.engine.clamp(-2, ScaleDirection.DOWN, self.defaults, history, 5, NOW)
        assert result.delta == -2

    def test_zero_scale_up_window_allows_immediate_flip(self):
        history = [entry(5, ScalingAction.SCALE_DOWN, 5, 4)]
        result = self.engine.clamp(2, ScaleDirection.UP, self.defaults, history, 4, NOW)
        assert result.delta == 2

    def test_movement_inside_period_is_deducted(self):
        """Test that replicas already added in the period count against the cap."""
        config = behavior(scaleUp={"policies": [{"type": "Pods", "value": 4, "periodSeconds": 15}]})
        history = [entry(10, ScalingAction.SCALE_UP, 3, 5)]

        result = self.engine.clamp(4, ScaleDirection.UP, config, history, 5, NOW)
        assert result.delta == 2

    def test_exhausted_period_suppresses(self):
        config = behavior(scaleUp={"policies": [{"type": "Pods", "value": 2, "periodSeconds": 60}]})
        history = [entry(10, ScalingAction.SCALE_UP, 3, 5)]

        result = self.engine.clamp(2, ScaleDirection.UP, config, history, 5, NOW)
        assert result.delta == 0
        assert result.suppressed is True

    def test_no_policies_means_no_cap(self):
        config = behavior(scaleUp={"policies": []})
        result = self.engine.clamp(20, ScaleDirection.UP, config, [], 3, NOW)
        assert result.delta == 20
