"""Lightweight entity, topic and intent extraction for queries and messages."""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List


ENTITY_PATTERNS = [
    re.compile(r"\b[A-Z][a-z]+ [A-Z][a-z]+\b"),      # person / proper names
    re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b"),        # dates
    re.compile(r"\b\d{1,2}:\d{2}\b"),                # times
    re.compile(r"\$\d+(?:\.\d{2})?\b"),              # money
    re.compile(r"\b[A-Z]{2,}\b"),                    # acronyms
]

TOPIC_KEYWORDS: Dict[str, List[str]] = {
    "technology": ["software", "computer", "programming", "code", "algorithm", "data"],
    "business": ["company", "market", "sales", "revenue", "profit", "customer"],
    "health": ["doctor", "medicine", "treatment", "symptoms", "health", "medical"],
    "education": ["school", "student", "teacher", "learning", "study", "course"],
    "travel": ["trip", "vacation", "hotel", "flight", "destination", "travel"],
}

QUESTION_STARTERS = ("what", "how", "why", "when", "where", "who", "which")


@dataclass
class QueryAnalysis:
    query: str
    entities: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    intent: str = "new_topic"


def extract_entities(text: str) -> List[str]:
    entities: List[str] = []
    for pattern in ENTITY_PATTERNS:
        for match in pattern.findall(text):
            if match not in entities:
                entities.append(match)
    return entities


def extract_topics(text: str) -> List[str]:
    lowered = text.lower()
    return [
        topic for topic, keywords in TOPIC_KEYWORDS.items()
        if any(keyword in lowered for keyword in keywords)
    ]


def classify_intent(text: str) -> str:
    lowered = text.lower().strip()

    if "?" in lowered or lowered.startswith(QUESTION_STARTERS):
        return "question"
    if any(kw in lowered for kw in ("can you", "please", "help")):
        return "request"
    if any(kw in lowered for kw in ("clarify", "explain", "mean")):
        return "clarification"
    if re.search(r"\b(also|and|furthermore)\b", lowered):
        return "continuation"
    return "new_topic"


def analyze_query(query: str) -> QueryAnalysis:
    return QueryAnalysis(
        query=query,
        entities=extract_entities(query),
        topics=extract_topics(query),
        intent=classify_intent(query),
    )


def entity_overlap(query_entities: Iterable[str], message_entities: Iterable[str]) -> float:
    """Jaccard similarity of two entity sets (case-insensitive)."""
    a = {e.lower() for e in query_entities}
    b = {e.lower() for e in message_entities}
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def topic_similarity(query_topics: Iterable[str], message_topics: Iterable[str]) -> float:
    a = {t.lower() for t in query_topics}
    b = {t.lower() for t in message_topics}
    if not a or not b:
        return 0.0
    return len(a & b) / max(len(a), len(b))
