"""Webhook notifications for terminal promotion events.

Events:
    promotion.succeeded: Config record now points at the new artifact
    promotion.failed: Promotion ended in Rejected, PublishFailed or ConfigUpdateFailed
    rollback: An operator restored a prior revision

Delivery is an HTTP POST of a JSON payload via httpx. Server errors (5xx),
timeouts and transport errors are retried with exponential backoff; client
errors (4xx) are not. Delivery failures are reported in the returned
results and logged, never raised: a promotion's outcome does not depend on
whether anyone was told about it.

Example:
    >>> notifier = WebhookNotifier([
    ...     WebhookConfig(url="https://hooks.example.com/deploys", events=["promotion.succeeded"]),
    ... ])
    >>> results = await notifier.notify_all("promotion.succeeded", {"artifact": "my-app"})
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from promoter_core.schemas.config import WebhookConfig
from promoter_core.telemetry.tracing import create_span

BACKOFF_BASE_SECONDS = 1.0
"""Base delay for exponential backoff (doubles each retry)."""

EVENT_PROMOTION_SUCCEEDED = "promotion.succeeded"
EVENT_PROMOTION_FAILED = "promotion.failed"
EVENT_ROLLBACK = "rollback"

logger = structlog.get_logger(__name__)


class WebhookNotificationResult(BaseModel):
    """Result of delivering one event to one webhook.

    Examples:
        >>> WebhookNotificationResult(success=True, status_code=200, url="https://x").success
        True
    """

    model_config = ConfigDict(extra="forbid")

    success: bool = Field(..., description="Whether notification delivered successfully")
    status_code: int | None = Field(default=None, description="HTTP response status code")
    url: str = Field(..., description="Target webhook URL")
    error: str | None = Field(default=None, description="Error message if failed")
    attempts: int = Field(default=1, ge=1, description="Number of delivery attempts")


class WebhookNotifier:
    """Delivers promotion events to every subscribed webhook."""

    def __init__(
        self,
        configs: list[WebhookConfig],
        *,
        backoff_base_seconds: float = BACKOFF_BASE_SECONDS,
    ) -> None:
        self.configs = list(configs)
        self._backoff_base_seconds = backoff_base_seconds

    def subscribers(self, event_type: str) -> list[WebhookConfig]:
        """Webhooks subscribed to ``event_type``."""
        return [config for config in self.configs if event_type in config.events]

    @staticmethod
    def build_payload(event_type: str, event_data: dict[str, Any]) -> dict[str, Any]:
        """Wrap event data with the event type and emission time."""
        return {
            "event_type": event_type,
            "emitted_at": datetime.now(timezone.utc).isoformat(),
            **event_data,
        }

    def _backoff(self, attempt: int) -> float:
        return self._backoff_base_seconds * (2 ** (attempt - 1))

    async def notify(
        self,
        config: WebhookConfig,
        event_type: str,
        event_data: dict[str, Any],
    ) -> WebhookNotificationResult:
        """Send one event to one webhook, retrying transient failures.

        Args:
            config: Target webhook.
            event_type: Event type name.
            event_data: Event-specific fields merged into the payload.

        Returns:
            WebhookNotificationResult with delivery status.
        """
        url = config.url
        max_attempts = 1 + config.retry_count
        payload = self.build_payload(event_type, event_data)
        log = logger.bind(url=url, event_type=event_type)

        with create_span(
            "promoter.webhook.notify",
            attributes={
                "webhook.url": url,
                "webhook.event_type": event_type,
                "webhook.max_attempts": max_attempts,
            },
        ) as span:
            start_time = time.monotonic()
            last_status_code: int | None = None
            last_error: str | None = None
            attempts = 0

            for attempt in range(1, max_attempts + 1):
                attempts = attempt
                try:
                    async with httpx.AsyncClient(timeout=config.timeout_seconds) as client:
                        response = await client.post(
                            url=url,
                            json=payload,
                            headers=config.headers or {},
                        )
                except httpx.TimeoutException:
                    last_error = "Request timed out"
                except httpx.RequestError as e:
                    last_error = str(e)
                else:
                    last_status_code = response.status_code
                    if response.status_code < 400:
                        duration_ms = int((time.monotonic() - start_time) * 1000)
                        span.set_attribute("webhook.status_code", response.status_code)
                        span.set_attribute("webhook.attempts", attempt)
                        log.info(
                            "webhook_notification_sent",
                            status_code=response.status_code,
                            attempts=attempt,
                            duration_ms=duration_ms,
                        )
                        return WebhookNotificationResult(
                            success=True,
                            status_code=response.status_code,
                            url=url,
                            attempts=attempt,
                        )
                    if response.status_code < 500:
                        last_error = f"Client error: {response.status_code}"
                        break
                    last_error = f"Server error: {response.status_code}"

                if attempt < max_attempts:
                    backoff_delay = self._backoff(attempt)
                    log.warning(
                        "webhook_notification_retry",
                        error=last_error,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        backoff_seconds=backoff_delay,
                    )
                    await asyncio.sleep(backoff_delay)

            duration_ms = int((time.monotonic() - start_time) * 1000)
            span.set_attribute("webhook.attempts", attempts)
            span.set_attribute("webhook.success", False)
            if last_status_code is not None:
                span.set_attribute("webhook.status_code", last_status_code)

            log.error(
                "webhook_notification_failed",
                status_code=last_status_code,
                error=last_error,
                attempts=attempts,
                duration_ms=duration_ms,
            )
            return WebhookNotificationResult(
                success=False,
                status_code=last_status_code,
                url=url,
                error=last_error,
                attempts=attempts,
            )

    async def notify_all(
        self,
        event_type: str,
        event_data: dict[str, Any],
    ) -> list[WebhookNotificationResult]:
        """Send an event to every subscribed webhook.

        A failing webhook does not stop delivery to the others.

        Returns:
            One result per subscribed webhook, empty if none subscribe.
        """
        results: list[WebhookNotificationResult] = []
        for config in self.subscribers(event_type):
            results.append(await self.notify(config, event_type, event_data))
        return results

    def send(self, event_type: str, event_data: dict[str, Any]) -> list[WebhookNotificationResult]:
        """Blocking wrapper around notify_all for synchronous callers.

        Must not be called from inside a running event loop.
        """
        if not self.subscribers(event_type):
            logger.debug("webhook_skipped", event_type=event_type, reason="no_subscribers")
            return []
        return asyncio.run(self.notify_all(event_type, event_data))


__all__ = [
    "EVENT_PROMOTION_FAILED",
    "EVENT_PROMOTION_SUCCEEDED",
    "EVENT_ROLLBACK",
    "WebhookNotificationResult",
    "WebhookNotifier",
]
