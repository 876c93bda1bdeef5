"""
Unit Tests for Metric Normalization
Tests target parsing, unit conversion and ratio computation.
"""
import pytest

from quorum_autoscaler.core.exceptions import InvalidMetricTargetError
from quorum_autoscaler.domain import MetricKind, MetricSpec, NodeMetrics
from quorum_autoscaler.metrics.normalizer import METRIC_EVALUATORS, MetricUnit, normalize, parse_target


def snapshot(**values: float) -> NodeMetrics:
    metrics = NodeMetrics()
    for key, value in values.items():
        metrics.set(key, value)
    return metrics


class TestParseTarget:
    """Test parsing of raw target strings."""

    def test_bare_number(self):
        assert parse_target(MetricSpec(kind="cpu", target="70")) == (70.0, False)

    def test_numeric_target_is_coerced_to_string(self):
        spec = MetricSpec(kind="connection_count", target=500)
        assert spec.target == "500"
        assert parse_target(spec) == (500.0, False)

    def test_percentage(self):
        value, is_fraction = parse_target(MetricSpec(kind="cpu", target="70%"))
        assert value == pytest.approx(0.7)
        assert is_fraction is True

    def test_duration_converted_to_milliseconds_for_latency(self):
        assert parse_target(MetricSpec(kind="query_latency", target="250ms")) == (250.0, False)
        assert parse_target(MetricSpec(kind="query_latency", target="1.5s")) == (1500.0, False)

    def test_duration_converted_to_seconds_for_custom(self):
        spec = MetricSpec(kind="custom", target="500ms", custom_query="histogram_quantile(0.99, x)")
        value, _ = parse_target(spec)
        assert value == pytest.approx(0.5)

    def test_duration_on_count_metric_is_invalid(self):
        with pytest.raises(InvalidMetricTargetError):
            parse_target(MetricSpec(kind="connection_count", target="5s"))

    @pytest.mark.parametrize("target", ["0", "-5", "0%", "abc", "70 percent", "%"])
    def test_invalid_targets(self, target):
        with pytest.raises(InvalidMetricTargetError) as exc_info:
            parse_target(MetricSpec(kind="cpu", target=target))
        assert exc_info.value.details["target"] == target


class TestEvaluatorTable:
    """Test the kind-to-evaluator lookup table."""

    def test_every_kind_has_an_evaluator(self):
        assert set(METRIC_EVALUATORS) == set(MetricKind)

    def test_utilization_kinds_are_percent(self):
        assert METRIC_EVALUATORS[MetricKind.CPU].unit == MetricUnit.PERCENT
        assert METRIC_EVALUATORS[MetricKind.MEMORY].unit == MetricUnit.PERCENT
        assert METRIC_EVALUATORS[MetricKind.QUERY_LATENCY].unit == MetricUnit.MILLISECONDS


class TestNormalize:
    """Test conversion of specs and snapshots into ratios."""

    def test_bare_number_ratio(self):
        result = normalize([MetricSpec(kind="cpu", target="70")], snapshot(cpu=85.0))

        assert len(result.ratios) == 1
        assert result.ratios[0].ratio == pytest.approx(85 / 70)

    def test_percentage_target_compares_against_utilization_fraction(self):
        result = normalize([MetricSpec(kind="cpu", target="70%")], snapshot(cpu=35.0))
        assert result.ratios[0].ratio == pytest.approx(0.5)

    def test_missing_live_value_is_skipped_not_zero(self):
        specs = [MetricSpec(kind="cpu", target="70"), MetricSpec(kind="memory", target="80")]
        result = normalize(specs, snapshot(cpu=70.0))

        assert [r.key for r in result.ratios] == ["cpu"]
        assert result.skipped == {"memory": "missing"}
        assert result.availability == pytest.approx(0.5)

    def test_stale_field_is_not_read(self):
        metrics = NodeMetrics(memory=95.0)
        result = normalize([MetricSpec(kind="memory", target="80")], metrics)
        assert result.ratios == []

    def test_unconfigured_live_values_are_ignored(self):
        result = normalize([MetricSpec(kind="cpu", target="70")], snapshot(cpu=70.0, memory=99.0))
        assert [r.key for r in result.ratios] == ["cpu"]

    def test_invalid_target_is_skipped(self):
        specs = [MetricSpec(kind="cpu", target="bogus"), MetricSpec(kind="memory", target="80")]
        result = normalize(specs, snapshot(cpu=50.0, memory=40.0))

        assert [r.key for r in result.ratios] == ["memory"]
        assert result.skipped["cpu"] == "InvalidMetricTargetError"

    def test_composite_score_is_weighted_mean(self):
        specs = [
            MetricSpec(kind="cpu", target="70", weight=3),
            MetricSpec(kind="memory", target="80", weight=1),
        ]
        result = normalize(specs, snapshot(cpu=84.0, memory=40.0))

        expected = (1.2 * 3 + 0.5 * 1) / 4
        assert result.composite_score() == pytest.approx(expected)

    def test_composite_score_without_ratios(self):
        result = normalize([MetricSpec(kind="cpu", target="70")], NodeMetrics())
        assert result.composite_score() is None
        assert result.availability == 0.0

    def test_custom_metric_key(self):
        spec = MetricSpec(kind="custom", target="100", custom_query="sum(rate(tx[1m]))", name="tx_rate")
        result = normalize([spec], snapshot(**{"custom:tx_rate": 150.0}))
        assert result.ratios[0].ratio == pytest.approx(1.5)
