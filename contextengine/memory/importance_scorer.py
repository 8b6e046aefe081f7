"""Score message importance for context selection."""

import logging
import re

from contextengine.core.interfaces import Message
from contextengine.utils.validation import content_to_text

logger = logging.getLogger(__name__)

MARKED_IMPORTANCE_FLOOR = 0.8
UNMARK_DAMPING = 0.5


class ImportanceScorer:
    """
    Scores messages by importance from cheap textual heuristics.

    High importance indicators:
    - Questions
    - Decisions and commitments
    - Explicit emphasis ("important", "remember", ...)
    - Messages written by the user
    """

    BASE_SCORE = 0.5

    DECISION_PATTERN = re.compile(
        r"\b(decide|decided|commit|agree|agreed|promise|will do|let's)\b",
        re.IGNORECASE
    )

    EMPHASIS_PATTERN = re.compile(
        r"\b(important|critical|urgent|remember|note)\b",
        re.IGNORECASE
    )

    def score_message(self, message: Message) -> float:
        """
        Score message importance from 0.0 (trivial) to 1.0 (critical).

        Returns:
            Importance score
        """
        content = content_to_text(message.content)
        score = self.BASE_SCORE

        if '?' in content:
            score += 0.1

        if self.DECISION_PATTERN.search(content):
            score += 0.2

        if self.EMPHASIS_PATTERN.search(content):
            score += 0.15

        if message.role == 'user':
            score += 0.1

        return max(0.0, min(1.0, score))

    @staticmethod
    def apply_marking(score: float, important: bool) -> float:
        """Score after a user marks (or unmarks) a message as important."""
        if important:
            return max(score, MARKED_IMPORTANCE_FLOOR)
        return score * UNMARK_DAMPING
