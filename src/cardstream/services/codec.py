"""Frame decoding for the element stream."""

from __future__ import annotations

import json

from pydantic import ValidationError

from cardstream.core.exceptions import FrameDecodeError
from cardstream.schemas.stream import DecodedMessage, message_adapter


def decode_frame(frame: str | bytes | bytearray | memoryview) -> DecodedMessage:
    """Decode one raw frame into a typed stream message.

    Raises:
        FrameDecodeError: the frame is not UTF-8 JSON, has no known `type`
            tag, or fails structural validation.
    """
    if isinstance(frame, (bytes, bytearray, memoryview)):
        try:
            frame = bytes(frame).decode("utf-8")
        except UnicodeDecodeError as e:
            raise FrameDecodeError(f"Frame is not valid UTF-8: {e}") from e

    try:
        raw = json.loads(frame)
    except json.JSONDecodeError as e:
        raise FrameDecodeError(f"Frame is not valid JSON: {e.msg}") from e
    except RecursionError as e:
        raise FrameDecodeError("Frame is nested too deeply to decode") from e

    if not isinstance(raw, dict):
        raise FrameDecodeError(f"Frame must be a JSON object, got {type(raw).__name__}")
    if "type" not in raw:
        raise FrameDecodeError("Frame is missing the 'type' tag")

    try:
        return message_adapter.validate_python(raw)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        location = ".".join(str(p) for p in first.get("loc", ()))
        detail = first.get("msg", "invalid frame")
        raise FrameDecodeError(
            f"Invalid '{raw.get('type')}' frame at {location or '<root>'}: {detail}"
        ) from e
