"""
Live capture client for the realtime detection socket.

A session samples a video source on a fixed timer, pushes each frame to the
backend over one persistent websocket, and handles detection results as they
arrive. Detections are relayed through the gateway's webhook endpoint with a
client-side throttle.
"""
import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

import websockets
from websockets.protocol import State

from ..models.schemas import Detection
from ..services.normalizer import extract_detections
from ..services.webhook import ThrottledWebhookDispatcher
from .frame_source import CameraSource, encode_frame

logger = logging.getLogger(__name__)

REALTIME_WS_URL = os.getenv("REALTIME_WS_URL", "ws://detection-api:8000/detect/realtime")
GATEWAY_URL = os.getenv("GATEWAY_URL", "http://localhost:8000")
CAMERA_INDEX = os.getenv("CAMERA_INDEX", "0")

CAPTURE_INTERVAL_SECONDS = 0.5
DEFAULT_CONFIDENCE = 0.25
JPEG_QUALITY = 80

ResultCallback = Callable[[List[Detection], Dict[str, Any]], None]


class CaptureState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    SENDING = "sending"
    AWAITING_RESULT = "awaiting_result"


class LiveCaptureSession:
    def __init__(
        self,
        source: CameraSource,
        ws_url: str,
        dispatcher: ThrottledWebhookDispatcher,
        confidence: float = DEFAULT_CONFIDENCE,
        interval: float = CAPTURE_INTERVAL_SECONDS,
        jpeg_quality: int = JPEG_QUALITY,
        on_result: Optional[ResultCallback] = None,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.source = source
        self.ws_url = ws_url
        self.dispatcher = dispatcher
        self.confidence = confidence
        self.interval = interval
        self.jpeg_quality = jpeg_quality
        self.on_result = on_result
        self._connect = connect

        self.state = CaptureState.IDLE
        self.detections: List[Detection] = []
        self.image_size: Optional[Dict[str, Any]] = None
        self.latest_image: Optional[str] = None

        self._ws = None
        self._ticker: Optional[asyncio.Task] = None
        self._receiver: Optional[asyncio.Task] = None
        self._pending_read: Optional[asyncio.Future] = None
        self._notifications: Set[asyncio.Task] = set()

    @property
    def connection_open(self) -> bool:
        return self._ws is not None and getattr(self._ws, "state", None) is State.OPEN

    async def start(self) -> None:
        if self.state is not CaptureState.IDLE:
            raise RuntimeError("Capture session already running")

        await asyncio.to_thread(self.source.start)
        try:
            self._ws = await self._connect(self.ws_url)
        except Exception:
            self.source.release()
            raise
        logger.info("Realtime connection open: %s", self.ws_url)

        loop = asyncio.get_running_loop()
        self._receiver = loop.create_task(self._receive_loop())
        self._ticker = loop.create_task(self._tick_loop())
        self.state = CaptureState.CAPTURING

    async def wait_closed(self) -> None:
        """Block until the realtime connection stops delivering results"""
        if self._receiver is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._receiver

    async def _tick_loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Real-time detection tick failed")
            next_tick += self.interval
            await asyncio.sleep(max(0.0, next_tick - loop.time()))

    async def tick(self) -> bool:
        """
        Capture and send one frame.

        Returns False when the tick was skipped: the connection is not open or
        no frame was available. Skipped frames are dropped, never queued.
        """
        if not self.connection_open:
            return False

        # The worker thread outlives a cancelled tick; release waits on it
        read = asyncio.ensure_future(asyncio.to_thread(self.source.read))
        self._pending_read = read
        frame = await asyncio.shield(read)
        if frame is None:
            return False

        image = encode_frame(frame, quality=self.jpeg_quality)
        self.latest_image = image

        self.state = CaptureState.SENDING
        try:
            await self._ws.send(json.dumps({"image": image, "confidence": self.confidence}))
        except websockets.ConnectionClosed as exc:
            logger.warning("Frame not sent, connection closed: %s", exc)
            self.state = CaptureState.CAPTURING
            return False

        self.state = CaptureState.AWAITING_RESULT
        return True

    async def _receive_loop(self) -> None:
        try:
            async for message in self._ws:
                try:
                    self.handle_message(message)
                except Exception:
                    logger.exception("Failed to handle realtime result")
        except websockets.ConnectionClosed as exc:
            logger.warning("Realtime connection lost: %s", exc)
        logger.info("Realtime connection closed, no further results")

    def handle_message(self, message: Any) -> None:
        try:
            data = json.loads(message)
        except (TypeError, ValueError):
            logger.error("Failed to parse realtime message: %.200r", message)
            return

        if not isinstance(data, dict):
            logger.error("Unexpected realtime message: %.200r", data)
            return

        if not data.get("success"):
            if data.get("error"):
                logger.error("Realtime detection error: %s", data["error"])
            return

        self.detections = extract_detections(data)
        self.image_size = data.get("image_size")
        if self.state is CaptureState.AWAITING_RESULT:
            self.state = CaptureState.CAPTURING

        if self.on_result is not None:
            self.on_result(self.detections, data)

        if self.detections:
            self._spawn(self.dispatcher.dispatch(self.detections, self.latest_image))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._notifications.add(task)
        task.add_done_callback(self._notification_done)
        return task

    def _notification_done(self, task: asyncio.Task) -> None:
        self._notifications.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Webhook notification failed", exc_info=task.exception())

    async def drain(self) -> None:
        """Wait for webhook notifications still in flight"""
        if self._notifications:
            await asyncio.gather(*list(self._notifications), return_exceptions=True)

    async def stop(self) -> None:
        """Close the connection, stop the timer and release the source; every step runs"""
        steps = (
            ("close realtime connection", self._close_connection),
            ("stop capture timer", self._stop_timer),
            ("release video source", self._release_source),
        )
        for name, step in steps:
            try:
                await step()
            except Exception:
                logger.exception("Failed to %s", name)

        self.state = CaptureState.IDLE
        self.detections = []

    async def _close_connection(self) -> None:
        ws, self._ws = self._ws, None
        try:
            if ws is not None:
                await ws.close()
        finally:
            await _cancel(self._receiver)
            self._receiver = None

    async def _stop_timer(self) -> None:
        ticker, self._ticker = self._ticker, None
        await _cancel(ticker)

    async def _release_source(self) -> None:
        read, self._pending_read = self._pending_read, None
        if read is not None:
            await asyncio.gather(read, return_exceptions=True)
        await asyncio.to_thread(self.source.release)


async def _cancel(task: Optional[asyncio.Task]) -> None:
    if task is None or task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


def _log_result(detections: List[Detection], data: Dict[str, Any]) -> None:
    for detection in detections:
        logger.info(
            "%s %.1f%% at %s",
            detection.class_name,
            (detection.confidence or 0.0) * 100,
            detection.bbox.model_dump(),
        )


async def run_live_capture(
    ws_url: str,
    gateway_url: str,
    device: Any = 0,
    confidence: float = DEFAULT_CONFIDENCE,
    interval: float = CAPTURE_INTERVAL_SECONDS,
) -> None:
    dispatcher = ThrottledWebhookDispatcher(f"{gateway_url.rstrip('/')}/api/webhook")
    session = LiveCaptureSession(
        CameraSource(device),
        ws_url,
        dispatcher,
        confidence=confidence,
        interval=interval,
        on_result=_log_result,
    )
    await session.start()
    try:
        await session.wait_closed()
    finally:
        await session.stop()
        await session.drain()


def _parse_device(value: str) -> Any:
    return int(value) if value.isdigit() else value


def main():
    parser = argparse.ArgumentParser(description="Stream camera frames to the realtime detection backend")
    parser.add_argument("--ws-url", type=str, default=REALTIME_WS_URL,
                        help="Realtime detection websocket URL")
    parser.add_argument("--gateway-url", type=str, default=GATEWAY_URL,
                        help="Gateway base URL used for webhook relay")
    parser.add_argument("--device", type=_parse_device, default=_parse_device(CAMERA_INDEX),
                        help="Camera index or video file/stream URL")
    parser.add_argument("--confidence", type=float, default=DEFAULT_CONFIDENCE,
                        help="Confidence threshold sent with each frame")
    parser.add_argument("--interval", type=float, default=CAPTURE_INTERVAL_SECONDS,
                        help="Seconds between captured frames")

    args = parser.parse_args()

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    try:
        asyncio.run(run_live_capture(
            args.ws_url, args.gateway_url, args.device, args.confidence, args.interval
        ))
    except KeyboardInterrupt:
        logger.info("Live capture stopped")


if __name__ == "__main__":
    main()
