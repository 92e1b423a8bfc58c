from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
import logging
import os
import sys

from .routers import detect, webhook
from .models.schemas import HealthResponse
from .clients.detection_client import get_detection_client, DETECTION_API_URL
from .errors import GatewayError
from .services.gateway import DetectionGateway
from .services.webhook import get_webhook_dispatcher

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    dispatcher = get_webhook_dispatcher()
    logger.info("Detection backend: %s", DETECTION_API_URL)
    logger.info("Webhook URL: %s", dispatcher.url or "not configured")
    yield
    await dispatcher.drain()
    await get_detection_client().close()


app = FastAPI(
    title="Detection Gateway",
    description="FastAPI gateway in front of a remote object-detection backend",
    version="1.0.0",
    lifespan=lifespan,
)

# Add Prometheus metrics
Instrumentator().instrument(app).expose(app)

# Include routers
app.include_router(detect.router)
app.include_router(webhook.router)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    return JSONResponse(exc.to_body(), status_code=exc.status_code)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(
        {
            "error": "Detection failed",
            "details": str(exc) or "Unknown error",
            "backend_url": DETECTION_API_URL,
        },
        status_code=500,
    )


@app.get("/", response_class=JSONResponse)
async def root():
    return {
        "message": "Detection Gateway API",
        "endpoints": {
            "detect": "/api/detect",
            "webhook": "/api/webhook",
            "test_webhook": "/api/test-webhook",
            "health": "/health",
            "metrics": "/metrics"
        }
    }


@app.get("/health", response_model=HealthResponse)
async def health(gateway: DetectionGateway = Depends(detect.get_detection_gateway)):
    """Health check endpoint"""
    backend_status = await gateway.check_backend()

    return HealthResponse(
        status="healthy",
        backend="ready" if backend_status["status"] == "ok" else "unavailable",
        webhook="configured" if gateway.dispatcher.configured else "disabled",
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
