import os
from typing import Any, Dict, Optional

import httpx

DETECTION_API_URL = os.getenv("DETECTION_API_URL", "http://detection-api:8000")
DETECTION_TIMEOUT = float(os.getenv("DETECTION_TIMEOUT", "120"))

IMAGE_ROUTE = "/detect/image"
VIDEO_ROUTE = "/detect/video"


class DetectionClient:
    def __init__(
        self,
        url: str,
        timeout: float = DETECTION_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    def _connect(self) -> httpx.AsyncClient:
        """Create the pooled HTTP client for the detection backend"""
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(
                base_url=self.url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self.client

    async def detect(
        self,
        route: str,
        filename: str,
        content: bytes,
        content_type: str,
        params: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """
        Forward one buffered upload to a detection route

        Args:
            route: Backend path, ``/detect/image`` or ``/detect/video``
            filename: Name reported in the multipart ``file`` field
            content: Full upload bytes
            content_type: Declared media type of the upload
            params: Query parameters appended to the route

        Returns:
            The backend response; the body is read in full
        """
        client = self._connect()
        files = {"file": (filename, content, content_type)}
        return await client.post(route, files=files, params=params or None)

    async def health(self) -> Any:
        """Fetch the backend health payload, raising on transport or decode errors"""
        client = self._connect()
        response = await client.get("/health")
        return response.json()

    async def close(self):
        """Close the client connection"""
        if self.client:
            await self.client.aclose()
            self.client = None


detection_client = None


def get_detection_client() -> DetectionClient:
    """Get or create the detection backend client"""
    global detection_client
    if detection_client is None:
        detection_client = DetectionClient(DETECTION_API_URL)
    return detection_client
