"""
Fold a video-detection response body into one aggregate result.

The video route either buffers the whole result and answers with a single JSON
document, or streams newline-delimited JSON events (one per analysed frame,
plus bookkeeping records such as a trailing summary).
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Union

from ..errors import ResponseParseError
from ..models.schemas import AggregateVideoResult

logger = logging.getLogger(__name__)

FRAME_EVENT = "frame"


@dataclass(frozen=True)
class SingleDocument:
    value: Any


@dataclass(frozen=True)
class DocumentLines:
    values: List[Any]


@dataclass(frozen=True)
class Malformed:
    reason: str


ParsedBody = Union[SingleDocument, DocumentLines, Malformed]


def _try_json(text: str):
    try:
        return True, json.loads(text)
    except ValueError:
        return False, None


def classify_body(text: str) -> ParsedBody:
    """Decide whether ``text`` is one JSON document, NDJSON, or neither"""
    ok, value = _try_json(text)
    if ok:
        return SingleDocument(value)

    values = []
    # Records are "\n"-separated; U+2028 and similar may appear inside JSON strings
    for line_number, line in enumerate(text.split("\n"), start=1):
        if not line.strip():
            continue
        ok, value = _try_json(line)
        if not ok:
            return Malformed(f"line {line_number} is not valid JSON")
        values.append(value)

    if not values:
        return Malformed("empty body")
    return DocumentLines(values)


def aggregate_frames(events: List[Any]) -> AggregateVideoResult:
    frames: List[Dict[str, Any]] = [
        event for event in events
        if isinstance(event, dict) and event.get("type") == FRAME_EVENT
    ]
    return AggregateVideoResult(
        success=True,
        frames=frames,
        total_frames=len(frames),
        total_detections=sum(frame.get("count") or 0 for frame in frames),
    )


def aggregate_video_body(text: str) -> Any:
    """
    Return the aggregate result for a video response body.

    A single JSON document is returned unchanged. NDJSON is reduced to
    ``AggregateVideoResult`` fields. Anything else raises
    ``ResponseParseError``; a partially parsed stream is never returned.
    """
    parsed = classify_body(text)

    if isinstance(parsed, SingleDocument):
        return parsed.value

    if isinstance(parsed, DocumentLines):
        result = aggregate_frames(parsed.values)
        logger.info(
            "Aggregated streamed video result: %d frames, %d detections",
            result.total_frames,
            result.total_detections,
        )
        return result.model_dump()

    logger.error("Failed to parse video response (%s): %s", parsed.reason, text[:500])
    raise ResponseParseError("Invalid JSON response from video endpoint")
