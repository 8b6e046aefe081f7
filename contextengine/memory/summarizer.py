"""Extractive summaries for conversation segments."""

import logging
import re
from typing import List

from contextengine.core.interfaces import MessageMetadata

logger = logging.getLogger(__name__)

COMMON_WORDS = {
    'this', 'that', 'with', 'have', 'from', 'they', 'what', 'when', 'there',
    'about', 'would', 'could', 'should', 'which', 'their', 'these', 'those',
    'where', 'there', 'been', 'were', 'will', 'just', 'like', 'into',
}

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_WORD = re.compile(r"[a-zA-Z][a-zA-Z'-]+")


class SegmentSummarizer:
    """
    Deterministic extractive summarizer.

    The summary names the role mix, the recurring topic words of the user
    side, and quotes the sentences from the most important messages.
    """

    def __init__(self, max_topics: int = 5, max_sentences: int = 3, max_sentence_length: int = 200):
        self.max_topics = max_topics
        self.max_sentences = max_sentences
        self.max_sentence_length = max_sentence_length

    def summarize(self, messages: List[MessageMetadata]) -> str:
        if not messages:
            return "No messages to summarize"

        user_count = sum(1 for m in messages if m.role == "user")
        assistant_count = sum(1 for m in messages if m.role == "assistant")

        summary_parts = [
            f"Conversation with {user_count} user messages and {assistant_count} responses"
        ]

        top_words = self._top_words(messages)
        if top_words:
            summary_parts.append(f"Main topics: {', '.join(top_words)}")

        highlights = self._highlights(messages)
        if highlights:
            summary_parts.append("Key points: " + " ".join(highlights))

        return ". ".join(summary_parts)

    def _top_words(self, messages: List[MessageMetadata]) -> List[str]:
        user_text = " ".join(m.content for m in messages if m.role == "user").lower()
        if not user_text:
            user_text = " ".join(m.content for m in messages).lower()

        # Meaningful words only (>4 chars, not common words)
        word_freq = {}
        for word in _WORD.findall(user_text):
            if len(word) > 4 and word not in COMMON_WORDS:
                word_freq[word] = word_freq.get(word, 0) + 1

        # Ties broken alphabetically so the summary is stable
        ranked = sorted(word_freq.items(), key=lambda x: (-x[1], x[0]))
        return [word for word, _ in ranked[:self.max_topics]]

    def _highlights(self, messages: List[MessageMetadata]) -> List[str]:
        ranked = sorted(messages, key=lambda m: (-m.importance_score, m.position))
        highlights: List[str] = []
        for meta in ranked:
            sentence = _SENTENCE_SPLIT.split(meta.content.strip(), maxsplit=1)[0].strip()
            if not sentence or sentence in highlights:
                continue
            if len(sentence) > self.max_sentence_length:
                sentence = sentence[:self.max_sentence_length - 3] + "..."
            highlights.append(sentence)
            if len(highlights) >= self.max_sentences:
                break
        return highlights
