"""Message-level analysis: token counts, importance, entities, facts, summaries.

Usage:
    from contextengine.memory import ImportanceScorer, estimate_tokens

    scorer = ImportanceScorer()
    score = scorer.score_message(message)
    tokens = estimate_tokens(message.content)
"""

from contextengine.memory.fact_extractor import extract_fact
from contextengine.memory.importance_scorer import ImportanceScorer
from contextengine.memory.query_analyzer import QueryAnalysis, analyze_query
from contextengine.memory.summarizer import SegmentSummarizer
from contextengine.memory.token_estimator import estimate_tokens

__all__ = [
    "ImportanceScorer",
    "QueryAnalysis",
    "SegmentSummarizer",
    "analyze_query",
    "estimate_tokens",
    "extract_fact",
]
