"""
Unit tests for the webhook dispatchers in detection_gateway.services.webhook.
"""
import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from detection_gateway.models.schemas import BoundingBox, Detection
from detection_gateway.services.webhook import (
    ThrottleState,
    ThrottledWebhookDispatcher,
    WebhookDispatcher,
)

from conftest import WEBHOOK_URL

GUN = Detection(class_id=0, class_name="gun", confidence=0.9, bbox=BoundingBox(x1=1, y1=2, x2=3, y2=4))


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_dispatch_posts_payload(webhook_peer):
    dispatcher = WebhookDispatcher(WEBHOOK_URL, transport=webhook_peer.transport)

    delivered = await dispatcher.dispatch([GUN], image="aGVsbG8=")

    assert delivered is True
    assert len(webhook_peer.requests) == 1
    request = webhook_peer.requests[0]
    assert request.method == "POST"
    assert str(request.url) == WEBHOOK_URL
    assert webhook_peer.json_bodies()[0] == {
        "detections": [{"class_id": 0, "class_name": "gun", "confidence": 0.9,
                        "bbox": {"x1": 1, "y1": 2, "x2": 3, "y2": 4}}],
        "image": "aGVsbG8=",
    }


@pytest.mark.asyncio
async def test_dispatch_without_url_is_silent_noop(webhook_peer):
    dispatcher = WebhookDispatcher(None, transport=webhook_peer.transport)
    assert await dispatcher.dispatch([GUN]) is False
    assert webhook_peer.requests == []


@pytest.mark.asyncio
async def test_dispatch_logs_non_2xx(make_backend, mocker):
    peer = make_backend(lambda request: httpx.Response(502, text="bad gateway"))
    dispatcher = WebhookDispatcher(WEBHOOK_URL, transport=peer.transport)
    mock_logger_error = mocker.patch("detection_gateway.services.webhook.logger.error")

    assert await dispatcher.dispatch([GUN]) is False
    mock_logger_error.assert_called_once()


@pytest.mark.asyncio
async def test_dispatch_swallows_transport_errors(make_backend):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    dispatcher = WebhookDispatcher(WEBHOOK_URL, transport=make_backend(refuse).transport)
    assert await dispatcher.dispatch([GUN]) is False


@pytest.mark.asyncio
async def test_spawn_runs_detached_and_reports_completion(webhook_peer):
    finished = asyncio.Event()
    completed = []

    def on_complete(task):
        completed.append(task.result())
        finished.set()

    dispatcher = WebhookDispatcher(WEBHOOK_URL, transport=webhook_peer.transport, on_complete=on_complete)
    task = dispatcher.spawn(dispatcher.dispatch([GUN]))

    assert not task.done()
    await asyncio.wait_for(finished.wait(), timeout=1.0)
    assert completed == [True]
    assert len(webhook_peer.requests) == 1


@pytest.mark.asyncio
async def test_spawn_logs_task_failure(mocker):
    dispatcher = WebhookDispatcher(WEBHOOK_URL)
    mock_logger_error = mocker.patch("detection_gateway.services.webhook.logger.error")

    async def explode():
        raise ValueError("boom")

    dispatcher.spawn(explode())
    await dispatcher.drain()
    await asyncio.sleep(0)

    mock_logger_error.assert_called_once()


def test_throttle_state_window():
    state = ThrottleState().record_success(0.0)
    assert not state.allows(29.999, 30.0)
    assert state.allows(30.0, 30.0)
    assert state.allows(30.001, 30.0)
    assert ThrottleState().allows(0.0, 30.0)


@pytest.mark.asyncio
async def test_throttle_boundary(webhook_peer):
    clock = FakeClock(0.0)
    dispatcher = ThrottledWebhookDispatcher(
        "http://gateway.test/api/webhook", clock=clock, transport=webhook_peer.transport
    )

    assert await dispatcher.dispatch([GUN]) is True
    assert len(webhook_peer.requests) == 1

    clock.now = 29.999
    assert await dispatcher.dispatch([GUN]) is False
    assert len(webhook_peer.requests) == 1

    clock.now = 30.001
    assert await dispatcher.dispatch([GUN]) is True
    assert len(webhook_peer.requests) == 2
    assert dispatcher.state.last_sent == 30.001


@pytest.mark.asyncio
async def test_failed_send_does_not_consume_window(make_backend):
    statuses = iter([500, 200])
    peer = make_backend(lambda request: httpx.Response(next(statuses)))
    clock = FakeClock(100.0)
    dispatcher = ThrottledWebhookDispatcher(
        "http://gateway.test/api/webhook", clock=clock, transport=peer.transport
    )

    assert await dispatcher.dispatch([GUN]) is False
    assert dispatcher.state.last_sent is None

    clock.now = 101.0
    assert await dispatcher.dispatch([GUN]) is True
    assert dispatcher.state.last_sent == 101.0
    assert len(peer.requests) == 2


@pytest.mark.asyncio
async def test_dispatch_swallows_invalid_url(mocker):
    dispatcher = WebhookDispatcher(WEBHOOK_URL)
    mocker.patch.object(dispatcher, "deliver", AsyncMock(side_effect=httpx.InvalidURL("Invalid URL")))
    mock_logger_error = mocker.patch("detection_gateway.services.webhook.logger.error")

    assert await dispatcher.dispatch([GUN]) is False
    mock_logger_error.assert_called_once()


@pytest.mark.asyncio
async def test_throttled_dispatch_swallows_invalid_url(mocker):
    mocker.patch.object(httpx.AsyncClient, "post", AsyncMock(side_effect=httpx.InvalidURL("Invalid URL")))
    dispatcher = ThrottledWebhookDispatcher("http://gateway.test/api/webhook", clock=FakeClock(0.0))

    assert await dispatcher.dispatch([GUN]) is False
    assert dispatcher.state.last_sent is None
