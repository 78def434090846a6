"""Unit tests for WebhookNotifier delivery and retry behavior."""

from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from promoter_core.schemas.config import WebhookConfig
from promoter_core.webhooks import (
    EVENT_PROMOTION_FAILED,
    EVENT_PROMOTION_SUCCEEDED,
    WebhookNotifier,
)

URL = "https://hooks.example.com/deploys"


@pytest.fixture
def mock_post() -> Iterator[AsyncMock]:
    with patch.object(httpx.AsyncClient, "post", new_callable=AsyncMock) as post:
        post.return_value = httpx.Response(200)
        yield post


def _notifier(*events: str, retry_count: int = 2) -> WebhookNotifier:
    config = WebhookConfig(url=URL, events=list(events), retry_count=retry_count)
    return WebhookNotifier([config], backoff_base_seconds=0)


class TestNotify:
    @pytest.mark.anyio
    async def test_delivers_payload(self, mock_post: AsyncMock) -> None:
        notifier = _notifier(EVENT_PROMOTION_SUCCEEDED)

        results = await notifier.notify_all(EVENT_PROMOTION_SUCCEEDED, {"artifact": "my-app"})

        assert len(results) == 1
        assert results[0].success is True
        assert results[0].status_code == 200
        payload = mock_post.call_args.kwargs["json"]
        assert payload["event_type"] == EVENT_PROMOTION_SUCCEEDED
        assert payload["artifact"] == "my-app"
        assert "emitted_at" in payload

    @pytest.mark.anyio
    async def test_retries_server_errors(self, mock_post: AsyncMock) -> None:
        mock_post.side_effect = [httpx.Response(503), httpx.Response(502), httpx.Response(204)]
        notifier = _notifier(EVENT_PROMOTION_SUCCEEDED)

        results = await notifier.notify_all(EVENT_PROMOTION_SUCCEEDED, {})

        assert results[0].success is True
        assert results[0].attempts == 3

    @pytest.mark.anyio
    async def test_client_error_not_retried(self, mock_post: AsyncMock) -> None:
        mock_post.return_value = httpx.Response(404)
        notifier = _notifier(EVENT_PROMOTION_SUCCEEDED)

        results = await notifier.notify_all(EVENT_PROMOTION_SUCCEEDED, {})

        assert results[0].success is False
        assert results[0].status_code == 404
        assert results[0].error == "Client error: 404"
        assert mock_post.call_count == 1

    @pytest.mark.anyio
    async def test_timeouts_exhaust_retries(self, mock_post: AsyncMock) -> None:
        mock_post.side_effect = httpx.ConnectTimeout("timed out")
        notifier = _notifier(EVENT_PROMOTION_SUCCEEDED, retry_count=1)

        results = await notifier.notify_all(EVENT_PROMOTION_SUCCEEDED, {})

        assert results[0].success is False
        assert results[0].error == "Request timed out"
        assert results[0].attempts == 2

    @pytest.mark.anyio
    async def test_unsubscribed_event_skipped(self, mock_post: AsyncMock) -> None:
        notifier = _notifier(EVENT_PROMOTION_SUCCEEDED)

        assert await notifier.notify_all(EVENT_PROMOTION_FAILED, {}) == []
        mock_post.assert_not_called()


class TestSend:
    def test_send_runs_event_loop(self, mock_post: AsyncMock) -> None:
        results = _notifier(EVENT_PROMOTION_FAILED).send(EVENT_PROMOTION_FAILED, {"state": "x"})

        assert [r.success for r in results] == [True]

    def test_send_without_subscribers(self, mock_post: AsyncMock) -> None:
        assert WebhookNotifier([]).send(EVENT_PROMOTION_SUCCEEDED, {}) == []
        mock_post.assert_not_called()


def test_backoff_doubles() -> None:
    notifier = WebhookNotifier([], backoff_base_seconds=0.5)

    assert [notifier._backoff(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]
