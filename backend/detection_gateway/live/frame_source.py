import base64
import io
import logging
import threading
from typing import Optional, Union

import cv2
import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)


def encode_frame(frame: np.ndarray, quality: int = 80) -> str:
    """
    JPEG-encode a BGR frame and return it as base64 text
    (no ``data:`` prefix, which is what the realtime endpoint expects)
    """
    # OpenCV frames are BGR; Pillow wants RGB
    rgb = np.ascontiguousarray(frame[:, :, ::-1]) if frame.ndim == 3 else frame
    buffer = io.BytesIO()
    Image.fromarray(rgb).save(buffer, format="JPEG", quality=quality)
    return base64.b64encode(buffer.getvalue()).decode("ascii")


class CameraSource:
    """Camera or video file read through OpenCV"""

    def __init__(self, device: Union[int, str] = 0, width: int = 640, height: int = 480):
        self.device = device
        self.width = width
        self.height = height
        self.cap: Optional[cv2.VideoCapture] = None
        # VideoCapture is not thread-safe; read runs in worker threads
        self._lock = threading.Lock()

    def start(self) -> None:
        self.cap = cv2.VideoCapture(self.device)
        if not self.cap.isOpened():
            self.cap.release()
            self.cap = None
            raise ConnectionError(f"Failed to open video source {self.device!r}")
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        logger.info("Video source %r opened", self.device)

    def read(self) -> Optional[np.ndarray]:
        """Latest frame, or None when the source has nothing ready"""
        with self._lock:
            if self.cap is None:
                return None
            ok, frame = self.cap.read()
        if not ok or frame is None:
            return None
        return frame

    def release(self) -> None:
        with self._lock:
            cap, self.cap = self.cap, None
        if cap is not None:
            cap.release()
            logger.info("Video source %r released", self.device)
