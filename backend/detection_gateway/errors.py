from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base error rendered to the caller as a structured JSON body"""

    status_code = 500
    error = "Detection failed"

    def __init__(
        self,
        details: str,
        status_code: Optional[int] = None,
        upstream_status: Optional[int] = None,
        backend_url: Optional[str] = None,
    ):
        super().__init__(details)
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        self.upstream_status = upstream_status
        self.backend_url = backend_url

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error, "details": self.details}
        if self.upstream_status is not None:
            body["status"] = self.upstream_status
        if self.backend_url is not None:
            body["backend_url"] = self.backend_url
        return body


class MissingFileError(GatewayError):
    status_code = 400
    error = "No file provided"

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.error}


class UnsupportedMediaError(GatewayError):
    status_code = 400
    error = "Unsupported file type. Please upload an image or video."

    def __init__(self, content_type: Optional[str]):
        super().__init__(f"Unsupported media type: {content_type or 'unknown'}")
        self.content_type = content_type

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.error, "details": self.details}


class UpstreamError(GatewayError):
    """Backend was reachable but answered with a non-success status"""

    def __init__(self, details: str, upstream_status: int, backend_url: str):
        super().__init__(
            details,
            status_code=upstream_status,
            upstream_status=upstream_status,
            backend_url=backend_url,
        )


class ResponseParseError(GatewayError):
    """Backend said ok but the body is neither JSON nor NDJSON"""


class BackendTransportError(GatewayError):
    pass
