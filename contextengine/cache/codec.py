"""Tagged JSON encoding for values that cross into the slow cache tier."""

import json
from typing import Any

from contextengine.core.interfaces import ContextWindow, VectorSearchResult

TAG_CONTEXT_WINDOW = "context_window"
TAG_VECTOR_RESULTS = "vector_results"
TAG_JSON = "json"


class CodecError(ValueError):
    """Payload is malformed or written by an incompatible version."""
    pass


def encode(value: Any) -> str:
    if isinstance(value, ContextWindow):
        tagged = {"type": TAG_CONTEXT_WINDOW, "data": value.to_dict()}
    elif isinstance(value, list) and value and all(isinstance(v, VectorSearchResult) for v in value):
        tagged = {"type": TAG_VECTOR_RESULTS, "data": [v.to_dict() for v in value]}
    else:
        tagged = {"type": TAG_JSON, "data": value}
    try:
        return json.dumps(tagged, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise CodecError(f"Value is not cacheable: {e}") from e


def decode(payload: str) -> Any:
    try:
        tagged = json.loads(payload)
        tag = tagged["type"]
        data = tagged["data"]
    except (TypeError, ValueError, KeyError) as e:
        raise CodecError(f"Malformed cache payload: {e}") from e

    try:
        if tag == TAG_CONTEXT_WINDOW:
            return ContextWindow.from_dict(data)
        if tag == TAG_VECTOR_RESULTS:
            return [VectorSearchResult.from_dict(v) for v in data]
    except (TypeError, ValueError, KeyError) as e:
        raise CodecError(str(e)) from e
    if tag == TAG_JSON:
        return data
    raise CodecError(f"Unknown cache payload type: {tag!r}")
