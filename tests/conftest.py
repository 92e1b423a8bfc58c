"""
Shared fixtures for the detection gateway test suite.

Backend and webhook HTTP traffic goes through ``httpx.MockTransport`` so every
outbound request is recorded and nothing leaves the process.
"""
import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

BACKEND_URL = "http://detection-backend.test"
WEBHOOK_URL = "http://notify.test/hook"


class RecordingBackend:
    """Mock HTTP peer that records requests and answers from a handler"""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: List[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def json_bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def image_backend_body() -> Dict[str, Any]:
    return {
        "success": True,
        "detections": [
            {"class": 0, "name": "gun", "confidence": 0.9, "xmin": 1, "ymin": 2, "xmax": 3, "ymax": 4}
        ],
        "count": 1,
    }


@pytest.fixture
def ndjson_video_body() -> str:
    lines = [
        {
            "type": "frame",
            "frame_number": 1,
            "count": 2,
            "detections": [
                {"class_id": 0, "class_name": "gun", "confidence": 0.81,
                 "bbox": {"x1": 10, "y1": 20, "x2": 30, "y2": 40}},
                {"class_id": 1, "class_name": "knife", "confidence": 0.55,
                 "bbox": {"x1": 50, "y1": 60, "x2": 70, "y2": 80}},
            ],
        },
        {"type": "summary", "total": 3},
        {
            "type": "frame",
            "frame_number": 2,
            "count": 1,
            "detections": [
                {"class_id": 0, "class_name": "gun", "confidence": 0.77,
                 "bbox": {"x1": 11, "y1": 21, "x2": 31, "y2": 41}},
            ],
        },
    ]
    return "\n".join(json.dumps(line) for line in lines) + "\n"


@pytest.fixture
def make_backend() -> Callable[..., RecordingBackend]:
    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> RecordingBackend:
        return RecordingBackend(handler)
    return _make


@pytest.fixture
def webhook_peer() -> RecordingBackend:
    """Notification endpoint that accepts everything"""
    return RecordingBackend(lambda request: httpx.Response(200, text="ok"))
