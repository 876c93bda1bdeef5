"""
Custom algorithm webhook client.

Posts the current metrics to an external endpoint and turns its answer into
per-tier proposals. The engine falls back to its own decision whenever the
endpoint is slow, unreachable or answers something it cannot validate.
"""
from __future__ import annotations

import asyncio
from typing import Any

import aiohttp
from pydantic import BaseModel, Field, ValidationError

from ..core.config import settings
from ..core.constants import Tier
from ..core.exceptions import WebhookError, WebhookTimeoutError
from ..core.logging import get_logger
from ..domain.models import ClusterMetrics, ClusterRef, ClusterState, DecisionSource, Proposal, ScalingAction
from ..domain.spec import ArbitrationPolicy, WebhookConfig

logger = get_logger(__name__)


class WebhookTargets(BaseModel):
    primaries: int | None = Field(default=None, ge=0)
    secondaries: int | None = Field(default=None, ge=0)


class WebhookResponse(BaseModel):
    """Response body of the custom algorithm."""

    action: ScalingAction = ScalingAction.NONE
    target_replicas: WebhookTargets = Field(default_factory=WebhookTargets)
    reason: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    def proposals(self, state: ClusterState) -> dict[Tier, Proposal]:
        """One proposal per tier the webhook named a target for."""
        result: dict[Tier, Proposal] = {}
        for tier in Tier:
            target = getattr(self.target_replicas, tier.value)
            if target is None:
                continue
            current = state.replicas(tier)
            if target > current:
                action = ScalingAction.SCALE_UP
            elif target < current:
                action = ScalingAction.SCALE_DOWN
            else:
                action = ScalingAction.NONE
            result[tier] = Proposal(
                source=DecisionSource.WEBHOOK,
                action=action,
                target_replicas=target,
                confidence=self.confidence,
                reason=f"webhook: {self.reason}" if self.reason else "webhook",
            )
        return result


def build_request(cluster: ClusterRef, metrics: ClusterMetrics | None, state: ClusterState) -> dict[str, Any]:
    return {
        "cluster": cluster.name,
        "namespace": cluster.namespace,
        "metrics": metrics.to_dict() if metrics is not None else {},
        "current_replicas": {tier.value: state.replicas(tier) for tier in Tier},
    }


def arbitrate(internal: Proposal, webhook: Proposal | None, policy: ArbitrationPolicy) -> Proposal:
    """Pick the proposal to act on."""
    if webhook is None or policy == ArbitrationPolicy.PREFER_INTERNAL:
        return internal
    if policy == ArbitrationPolicy.PREFER_WEBHOOK:
        return webhook
    return webhook if webhook.confidence > internal.confidence else internal


class WebhookClient:
    """Calls custom scaling algorithm endpoints."""

    def __init__(self, session: aiohttp.ClientSession | None = None, default_timeout: float | None = None):
        self._session = session
        self._owns_session = session is None
        self.default_timeout = default_timeout or settings.webhook_default_timeout_seconds

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def call(
        self,
        config: WebhookConfig,
        cluster: ClusterRef,
        metrics: ClusterMetrics | None,
        state: ClusterState,
        timeout: float | None = None,
    ) -> WebhookResponse:
        """
        Ask the webhook for a decision.

        ``timeout`` further bounds the configured timeout, e.g. by what is
        left of the caller's cycle deadline.

        Raises:
            WebhookTimeoutError: no answer within the configured timeout
            WebhookError: transport failure, non-2xx status or malformed body
        """
        limit = config.timeout or self.default_timeout
        if timeout is not None:
            limit = min(limit, timeout)
        payload = build_request(cluster, metrics, state)
        session = await self._get_session()

        try:
            async with asyncio.timeout(limit):
                async with session.request(config.method, config.url, json=payload) as response:
                    if response.status >= 400:
                        raise WebhookError(
                            f"webhook returned HTTP {response.status}",
                            url=config.url,
                            details={"status": response.status},
                        )
                    body = await response.json(content_type=None)
        except TimeoutError as e:
            raise WebhookTimeoutError(f"webhook did not answer within {limit:.3g}s", url=config.url) from e
        except aiohttp.ClientError as e:
            raise WebhookError(f"webhook request failed: {e}", url=config.url) from e
        except ValueError as e:
            raise WebhookError(f"webhook returned invalid JSON: {e}", url=config.url) from e

        try:
            parsed = WebhookResponse.model_validate(body)
        except ValidationError as e:
            raise WebhookError(
                "webhook response failed validation",
                url=config.url,
                details={"errors": e.errors(include_url=False)},
            ) from e

        logger.debug(f"Webhook {config.url} answered {parsed.action.value} for {cluster.key}")
        return parsed

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
