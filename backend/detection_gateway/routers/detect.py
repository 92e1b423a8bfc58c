from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse
from typing import Optional
import logging

from ..clients.detection_client import DetectionClient, get_detection_client
from ..services.gateway import DetectionGateway
from ..services.webhook import WebhookDispatcher, get_webhook_dispatcher

router = APIRouter(prefix="/api", tags=["detect"])
logger = logging.getLogger(__name__)


def get_detection_gateway(
    client: DetectionClient = Depends(get_detection_client),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> DetectionGateway:
    return DetectionGateway(client, dispatcher)


@router.post("/detect")
async def detect(
    file: Optional[UploadFile] = File(None),
    confidence: Optional[str] = Form(None),
    skip_frames: Optional[str] = Form(None),
    return_frames: Optional[str] = Form(None),
    gateway: DetectionGateway = Depends(get_detection_gateway),
):
    """
    Detect objects in an uploaded image or video
    Images go to the backend image route, videos to the video route.
    """
    content = await file.read() if file is not None else None
    result = await gateway.handle_upload(
        filename=file.filename if file is not None else None,
        content=content,
        content_type=file.content_type if file is not None else None,
        confidence=confidence,
        skip_frames=skip_frames,
        return_frames=return_frames,
    )
    return JSONResponse(result)


@router.get("/detect")
async def backend_health(gateway: DetectionGateway = Depends(get_detection_gateway)):
    """Check that the detection backend is reachable"""
    status = await gateway.check_backend()
    return JSONResponse(status, status_code=200 if status["status"] == "ok" else 503)
