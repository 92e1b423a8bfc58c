from pydantic import BaseModel, ConfigDict
from typing import List, Optional, Dict, Any, Union

Number = Union[int, float]


class BoundingBox(BaseModel):
    model_config = ConfigDict(frozen=True)

    x1: Optional[Number] = None
    y1: Optional[Number] = None
    x2: Optional[Number] = None
    y2: Optional[Number] = None


class Detection(BaseModel):
    model_config = ConfigDict(frozen=True)

    class_id: Optional[int] = None
    class_name: Optional[str] = None
    confidence: Optional[float] = None
    bbox: BoundingBox
    frame_number: Optional[int] = None

    def to_wire(self) -> Dict[str, Any]:
        """Serialize, leaving frame_number out for image detections"""
        exclude = None if self.frame_number is not None else {"frame_number"}
        return self.model_dump(exclude=exclude)


class AggregateVideoResult(BaseModel):
    success: bool = True
    frames: List[Dict[str, Any]]
    total_frames: int
    total_detections: int


class WebhookPayload(BaseModel):
    detections: List[Detection]
    image: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"detections": [d.to_wire() for d in self.detections]}
        if self.image:
            payload["image"] = self.image
        return payload


class HealthResponse(BaseModel):
    status: str
    backend: str
    webhook: str
