import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Dict, Iterable, Optional, Set

import httpx

from ..models.schemas import Detection, WebhookPayload

logger = logging.getLogger(__name__)

WEBHOOK_URL = os.getenv("WEBHOOK_URL") or None
WEBHOOK_TIMEOUT = float(os.getenv("WEBHOOK_TIMEOUT", "10"))

# Minimum spacing between two successful live-capture notifications
THROTTLE_WINDOW_SECONDS = 30.0


def _build_payload(detections: Iterable[Detection], image: Optional[str]) -> Dict[str, Any]:
    return WebhookPayload(detections=list(detections), image=image).to_wire()


class WebhookDispatcher:
    """
    Posts detection payloads to the configured notification URL.

    Delivery is best effort: ``dispatch`` logs failures and never raises, and
    ``spawn`` runs work as a detached task so the caller is never held up.
    """

    def __init__(
        self,
        url: Optional[str],
        timeout: float = WEBHOOK_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        on_complete: Optional[Callable[[asyncio.Task], None]] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport
        self._on_complete = on_complete
        self._tasks: Set[asyncio.Task] = set()

    @property
    def configured(self) -> bool:
        return bool(self.url)

    async def deliver(self, payload: Dict[str, Any]) -> httpx.Response:
        """POST ``payload`` as-is and hand back the raw response"""
        if not self.url:
            raise RuntimeError("Webhook URL not configured")
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            return await client.post(self.url, json=payload)

    async def dispatch(self, detections: Iterable[Detection], image: Optional[str] = None) -> bool:
        if not self.url:
            logger.info("No webhook URL configured, skipping webhook notification")
            return False

        payload = _build_payload(detections, image)
        logger.info("Sending webhook notification with %d detections", len(payload["detections"]))
        try:
            response = await self.deliver(payload)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.error("Error sending webhook: %s", exc)
            return False

        if not response.is_success:
            logger.error(
                "Webhook call failed: %s %s: %s",
                response.status_code,
                response.reason_phrase,
                response.text[:500],
            )
            return False

        logger.info("Webhook notification sent successfully")
        return True

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run ``coro`` detached from the caller; failures are only logged"""
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._finish)
        return task

    def _finish(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Webhook notification failed", exc_info=task.exception())
        if self._on_complete is not None:
            self._on_complete(task)

    async def drain(self) -> None:
        """Wait for every detached notification still in flight"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


@dataclass(frozen=True)
class ThrottleState:
    """Monotonic time of the last successful send, ``None`` until one happens"""

    last_sent: Optional[float] = None

    def allows(self, now: float, window: float) -> bool:
        return self.last_sent is None or now - self.last_sent >= window

    def remaining(self, now: float, window: float) -> float:
        if self.last_sent is None:
            return 0.0
        return max(0.0, window - (now - self.last_sent))

    def record_success(self, now: float) -> "ThrottleState":
        return ThrottleState(last_sent=now)


class ThrottledWebhookDispatcher:
    """
    Client-side dispatcher used by live capture.

    Sends go through the gateway's webhook relay. An attempt inside the
    throttle window is dropped locally without touching the network, and only a
    confirmed 2xx delivery moves the window forward.
    """

    def __init__(
        self,
        relay_url: str,
        window: float = THROTTLE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        timeout: float = WEBHOOK_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        state: Optional[ThrottleState] = None,
    ):
        self.relay_url = relay_url
        self.window = window
        self.clock = clock
        self.timeout = timeout
        self._transport = transport
        self.state = state or ThrottleState()

    async def dispatch(self, detections: Iterable[Detection], image: Optional[str] = None) -> bool:
        now = self.clock()
        if not self.state.allows(now, self.window):
            logger.debug(
                "Webhook throttled, %.0fs remaining",
                self.state.remaining(now, self.window),
            )
            return False

        payload = _build_payload(detections, image)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.relay_url, json=payload)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.error("Error sending webhook notification: %s", exc)
            return False

        if not response.is_success:
            logger.error("Webhook notification failed: %s %s", response.status_code, response.text[:500])
            return False

        self.state = self.state.record_success(now)
        logger.info("Webhook notification sent with %d detections", len(payload["detections"]))
        return True


webhook_dispatcher = None


def get_webhook_dispatcher() -> WebhookDispatcher:
    """Get or create the process-wide webhook dispatcher"""
    global webhook_dispatcher
    if webhook_dispatcher is None:
        webhook_dispatcher = WebhookDispatcher(WEBHOOK_URL)
    return webhook_dispatcher
