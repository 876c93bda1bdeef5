"""
HorizontalPodAutoscaler rendering for the secondary tier.

Secondaries carry no quorum, so their scaling can be delegated to a native
``autoscaling/v2`` HPA built from the same tier spec the engine evaluates.
"""
from __future__ import annotations

from kubernetes import client

from ..core.constants import (
    APP_NAME,
    DEFAULT_CPU_TARGET_PERCENT,
    LABEL_COMPONENT,
    LABEL_INSTANCE,
    LABEL_NAME,
    QUERY_LATENCY_POD_METRIC,
)
from ..core.exceptions import ConfigurationException, InvalidMetricTargetError
from ..core.logging import get_logger
from ..domain.models import ClusterRef
from ..domain.spec import AutoScalingSpec, MetricKind, MetricSpec, ScaleDirection, ScalingRules
from ..metrics.normalizer import parse_target

logger = get_logger(__name__)


def hpa_name(cluster: ClusterRef) -> str:
    return f"{cluster.name}-secondary-hpa"


def target_name(cluster: ClusterRef) -> str:
    return f"{cluster.name}-secondary"


def _utilization(kind: MetricKind, percent: int) -> client.V2MetricSpec:
    return client.V2MetricSpec(
        type="Resource",
        resource=client.V2ResourceMetricSource(
            name=kind.value,
            target=client.V2MetricTarget(type="Utilization", average_utilization=percent),
        ),
    )


def _metric(spec: MetricSpec) -> client.V2MetricSpec | None:
    if spec.kind not in (MetricKind.CPU, MetricKind.MEMORY, MetricKind.QUERY_LATENCY):
        return None
    value, is_fraction = parse_target(spec)

    if spec.kind == MetricKind.QUERY_LATENCY:
        return client.V2MetricSpec(
            type="Pods",
            pods=client.V2PodsMetricSource(
                metric=client.V2MetricIdentifier(name=QUERY_LATENCY_POD_METRIC),
                target=client.V2MetricTarget(type="AverageValue", average_value=f"{value:g}"),
            ),
        )

    percent = round(value * 100) if is_fraction else round(value)
    return _utilization(spec.kind, percent)


def build_metrics(spec: AutoScalingSpec) -> list[client.V2MetricSpec]:
    """HPA metrics for the secondary tier; CPU at 70% when nothing maps."""
    metrics: list[client.V2MetricSpec] = []
    for metric_spec in spec.secondaries.metrics:
        try:
            metric = _metric(metric_spec)
        except InvalidMetricTargetError as e:
            logger.warning(f"Leaving {metric_spec.key} out of the HPA: {e.message}")
            continue
        if metric is not None:
            metrics.append(metric)

    if not metrics:
        metrics.append(_utilization(MetricKind.CPU, DEFAULT_CPU_TARGET_PERCENT))
    return metrics


def _rules(rules: ScalingRules) -> client.V2HPAScalingRules:
    return client.V2HPAScalingRules(
        stabilization_window_seconds=rules.stabilization_window_seconds,
        select_policy=rules.select_policy.value,
        policies=[
            client.V2HPAScalingPolicy(type=p.type.value, value=p.value, period_seconds=p.period_seconds)
            for p in rules.policies or []
        ] or None,
    )


def build_secondary_hpa(cluster: ClusterRef, spec: AutoScalingSpec) -> client.V2HorizontalPodAutoscaler:
    """
    Render the HPA for ``cluster``'s secondary StatefulSet.

    Raises:
        ConfigurationException: the spec has no secondaries block
    """
    if spec.secondaries is None:
        raise ConfigurationException(
            f"cluster {cluster.key} has no secondaries autoscaling configuration",
            details={"cluster": cluster.key},
        )

    behavior = spec.secondaries.behavior
    return client.V2HorizontalPodAutoscaler(
        api_version="autoscaling/v2",
        kind="HorizontalPodAutoscaler",
        metadata=client.V1ObjectMeta(
            name=hpa_name(cluster),
            namespace=cluster.namespace,
            labels={
                LABEL_NAME: APP_NAME,
                LABEL_INSTANCE: cluster.name,
                LABEL_COMPONENT: "autoscaler",
            },
        ),
        spec=client.V2HorizontalPodAutoscalerSpec(
            scale_target_ref=client.V2CrossVersionObjectReference(
                api_version="apps/v1",
                kind="StatefulSet",
                name=target_name(cluster),
            ),
            min_replicas=spec.secondaries.min_replicas,
            max_replicas=spec.secondaries.max_replicas,
            metrics=build_metrics(spec),
            behavior=client.V2HorizontalPodAutoscalerBehavior(
                scale_up=_rules(behavior.rules_for(ScaleDirection.UP)),
                scale_down=_rules(behavior.rules_for(ScaleDirection.DOWN)),
            ),
        ),
    )
