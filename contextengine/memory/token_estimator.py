"""Approximate token counting."""

import json
import math
from typing import Any

CHARS_PER_TOKEN = 4


def estimate_tokens(content: Any) -> int:
    """Rough token estimate: ~4 characters per token."""
    if content is None:
        return 0
    if not isinstance(content, str):
        content = json.dumps(content, ensure_ascii=False)
    if not content:
        return 0
    return math.ceil(len(content) / CHARS_PER_TOKEN)
