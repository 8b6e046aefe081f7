"""Detect durable statements worth keeping as key facts."""

import re
from typing import Optional, Tuple

from contextengine.core.interfaces import FactType

_FACT_PATTERNS = [
    (FactType.DECISION, re.compile(
        r"\b(we|i)\s+(decided|agreed|will go with|chose|committed)\b|\blet's\b", re.IGNORECASE)),
    (FactType.PREFERENCE, re.compile(
        r"\bi\s+(prefer|like|love|hate|dislike|always|never)\b|\bmy favou?rite\b", re.IGNORECASE)),
    (FactType.GOAL, re.compile(
        r"\b(my|our)\s+goal\b|\bi\s+(want|need|plan)\s+to\b", re.IGNORECASE)),
]

MAX_FACT_LENGTH = 280


def _first_sentence(text: str, start: int) -> str:
    begin = max(text.rfind(".", 0, start), text.rfind("!", 0, start), text.rfind("?", 0, start))
    end_candidates = [i for i in (text.find(".", start), text.find("!", start), text.find("?", start)) if i != -1]
    end = min(end_candidates) + 1 if end_candidates else len(text)
    return text[begin + 1:end].strip()


def extract_fact(text: str) -> Optional[Tuple[FactType, str]]:
    """Return (type, sentence) for the first decision/preference/goal statement."""
    for fact_type, pattern in _FACT_PATTERNS:
        match = pattern.search(text)
        if match:
            sentence = _first_sentence(text, match.start())
            if sentence:
                return fact_type, sentence[:MAX_FACT_LENGTH]
    return None
