from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from typing import Any, Dict
import logging

import httpx

from ..services.webhook import WebhookDispatcher, get_webhook_dispatcher

router = APIRouter(prefix="/api", tags=["webhook"])
logger = logging.getLogger(__name__)

TEST_PAYLOAD = {
    "detections": [
        {
            "class_id": 0,
            "class_name": "gun",
            "confidence": 0.95,
            "bbox": {"x1": 100, "y1": 100, "x2": 200, "y2": 200},
        },
        {
            "class_id": 1,
            "class_name": "knife",
            "confidence": 0.88,
            "bbox": {"x1": 300, "y1": 150, "x2": 400, "y2": 250},
        },
    ]
}


@router.post("/webhook")
async def relay_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
):
    """Relay a detection payload to the configured notification URL"""
    try:
        body = await request.json()
    except ValueError as e:
        logger.error("Webhook relay received an unreadable body: %s", e)
        return JSONResponse(
            {"error": "Webhook relay failed", "details": str(e) or type(e).__name__},
            status_code=500,
        )

    if not isinstance(body, dict):
        body = {}
    detections = body.get("detections")
    image = body.get("image")
    logger.info(
        "Webhook relay called with %d detections, image included: %s",
        len(detections) if isinstance(detections, list) else 0,
        bool(image),
    )

    if not dispatcher.configured:
        logger.error("No webhook URL configured")
        return JSONResponse({"error": "Webhook URL not configured"}, status_code=500)

    if not isinstance(detections, list):
        return JSONResponse({"error": "Invalid detections data"}, status_code=400)

    payload: Dict[str, Any] = {"detections": detections}
    if image:
        payload["image"] = image

    try:
        response = await dispatcher.deliver(payload)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.exception("Webhook relay error")
        return JSONResponse(
            {"error": "Webhook relay failed", "details": str(e) or type(e).__name__},
            status_code=500,
        )

    logger.info("Webhook response status: %s", response.status_code)
    if not response.is_success:
        logger.error("Webhook call failed: %s %s", response.status_code, response.reason_phrase)
        return JSONResponse(
            {"error": "Webhook call failed", "status": response.status_code, "details": response.text},
            status_code=response.status_code,
        )

    return {"success": True}


@router.get("/test-webhook")
async def test_webhook(dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher)):
    """Send a fixed sample payload to the notification URL and report the raw answer"""
    if not dispatcher.configured:
        return JSONResponse(
            {
                "error": "WEBHOOK_URL not configured",
                "message": "Please set WEBHOOK_URL in the gateway environment",
            },
            status_code=500,
        )

    try:
        response = await dispatcher.deliver(TEST_PAYLOAD)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.exception("Webhook test failed")
        return JSONResponse(
            {
                "error": "Webhook test failed",
                "details": str(e) or type(e).__name__,
                "webhook_url": dispatcher.url,
            },
            status_code=500,
        )

    logger.info("Test webhook response status: %s", response.status_code)
    return {
        "success": response.is_success,
        "webhook_url": dispatcher.url,
        "status": response.status_code,
        "response": response.text,
        "test_payload": TEST_PAYLOAD,
    }
