import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..clients.detection_client import DetectionClient, IMAGE_ROUTE, VIDEO_ROUTE
from ..errors import (
    BackendTransportError,
    GatewayError,
    MissingFileError,
    ResponseParseError,
    UnsupportedMediaError,
    UpstreamError,
)
from .aggregator import aggregate_video_body
from .normalizer import extract_detections
from .webhook import WebhookDispatcher

logger = logging.getLogger(__name__)

VIDEO_ONLY_PARAMS = ("skip_frames", "return_frames")


def classify_media(content_type: Optional[str]) -> str:
    """Pick the backend route for a declared media type"""
    media_type = (content_type or "").lower()
    if media_type.startswith("image/"):
        return IMAGE_ROUTE
    if media_type.startswith("video/"):
        return VIDEO_ROUTE
    raise UnsupportedMediaError(content_type)


def build_query_params(
    route: str,
    confidence: Optional[str] = None,
    skip_frames: Optional[str] = None,
    return_frames: Optional[str] = None,
) -> Dict[str, str]:
    params: Dict[str, str] = {}
    if confidence:
        params["confidence"] = str(confidence)
    if route == VIDEO_ROUTE:
        for name, value in zip(VIDEO_ONLY_PARAMS, (skip_frames, return_frames)):
            if value:
                params[name] = str(value)
    return params


def upstream_error_message(response: httpx.Response) -> str:
    text = response.text
    try:
        data = json.loads(text)
    except ValueError:
        logger.error("Failed to parse error response as JSON: %s", text[:500])
        data = None

    if isinstance(data, dict):
        message = data.get("detail") or data.get("message")
        if message:
            return message if isinstance(message, str) else json.dumps(message)
    return f"Backend API error: {response.reason_phrase}"


class DetectionGateway:
    """Forwards uploads to the detection backend and triggers notifications"""

    def __init__(self, client: DetectionClient, dispatcher: WebhookDispatcher):
        self.client = client
        self.dispatcher = dispatcher

    @property
    def backend_url(self) -> str:
        return self.client.url

    async def handle_upload(
        self,
        filename: Optional[str],
        content: Optional[bytes],
        content_type: Optional[str],
        confidence: Optional[str] = None,
        skip_frames: Optional[str] = None,
        return_frames: Optional[str] = None,
    ) -> Any:
        if content is None:
            raise MissingFileError("No file provided")

        route = classify_media(content_type)
        params = build_query_params(route, confidence, skip_frames, return_frames)

        try:
            response = await self.client.detect(
                route, filename or "upload", content, content_type, params
            )
        except httpx.HTTPError as exc:
            logger.error("Detection backend request failed (%s): %s", self.backend_url, exc)
            raise BackendTransportError(str(exc) or type(exc).__name__, backend_url=self.backend_url)

        if not response.is_success:
            message = upstream_error_message(response)
            logger.error(
                "Backend API error: status=%s url=%s details=%s",
                response.status_code,
                response.request.url,
                message,
            )
            raise UpstreamError(message, response.status_code, self.backend_url)

        try:
            if route == VIDEO_ROUTE:
                result = aggregate_video_body(response.text)
            else:
                result = self._parse_image_body(response.text)
        except GatewayError as exc:
            exc.backend_url = self.backend_url
            raise

        logger.info("Detection complete for %s via %s", filename, route)
        self.dispatcher.spawn(self.notify(result))
        return result

    @staticmethod
    def _parse_image_body(text: str) -> Any:
        try:
            return json.loads(text)
        except ValueError:
            logger.error("Failed to parse success response as JSON: %s", text[:500])
            raise ResponseParseError("Invalid JSON response from backend")

    async def notify(self, result: Any) -> bool:
        detections: List = extract_detections(result)
        logger.info("Extracted %d detections for webhook", len(detections))
        return await self.dispatcher.dispatch(detections)

    async def check_backend(self) -> Dict[str, Any]:
        """Report backend reachability; failures degrade to an error status"""
        try:
            payload = await self.client.health()
        except Exception as exc:
            logger.warning("Detection backend unreachable at %s: %s", self.backend_url, exc)
            return {"status": "error", "message": "Backend unreachable"}
        return {"status": "ok", "backend": payload}
