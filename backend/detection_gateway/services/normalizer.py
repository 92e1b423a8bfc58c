"""
Normalize the detection records returned by the backend.

The backend is not consistent about key names: the identifier arrives as
``class_id`` or ``class``, the label as ``class_name`` or ``name``, and the
box either nested under ``bbox`` or as flat ``x1..y2`` / ``xmin..ymax`` keys.
Everything is resolved to one canonical ``Detection`` shape. Values are passed
through untouched; nothing here filters on confidence or recomputes geometry.
"""
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..models.schemas import BoundingBox, Detection

_BOX_KEYS = (("x1", "xmin"), ("y1", "ymin"), ("x2", "xmax"), ("y2", "ymax"))


def _first_present(record: Mapping[str, Any], *keys: str) -> Any:
    # A present-but-falsy value such as class_id=0 still wins over the alias
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def _resolve_bbox(record: Mapping[str, Any]) -> BoundingBox:
    nested = record.get("bbox")
    if isinstance(nested, Sequence) and not isinstance(nested, str) and len(nested) == 4:
        x1, y1, x2, y2 = nested
        return BoundingBox(x1=x1, y1=y1, x2=x2, y2=y2)

    source = nested if isinstance(nested, Mapping) else record
    return BoundingBox(**{
        primary: _first_present(source, primary, alias) for primary, alias in _BOX_KEYS
    })


def normalize_detection(record: Mapping[str, Any], frame_number: Optional[int] = None) -> Detection:
    """Resolve one raw detection record to the canonical shape"""
    fields: Dict[str, Any] = {
        "class_id": _first_present(record, "class_id", "class"),
        "class_name": _first_present(record, "class_name", "name"),
        "confidence": record.get("confidence"),
        "bbox": _resolve_bbox(record),
    }
    if frame_number is not None:
        fields["frame_number"] = frame_number
    return Detection(**fields)


def extract_detections(data: Any) -> List[Detection]:
    """
    Flatten an image-shaped (``detections``) or video-shaped (``frames``)
    backend result into an ordered list of detections.

    Video detections are stamped with the ``frame_number`` of their frame.
    """
    detections: List[Detection] = []
    if not isinstance(data, Mapping):
        return detections

    records = data.get("detections")
    if isinstance(records, list):
        detections.extend(normalize_detection(r) for r in records if isinstance(r, Mapping))

    frames = data.get("frames")
    if isinstance(frames, list):
        for frame in frames:
            if not isinstance(frame, Mapping):
                continue
            frame_records = frame.get("detections")
            if not isinstance(frame_records, list):
                continue
            frame_number = frame.get("frame_number")
            detections.extend(
                normalize_detection(r, frame_number=frame_number)
                for r in frame_records
                if isinstance(r, Mapping)
            )

    return detections
