"""Hierarchical segmentation of long conversations."""

import logging
from typing import Optional

from contextengine.core.interfaces import ConversationSegment
from contextengine.memory.summarizer import SegmentSummarizer

logger = logging.getLogger(__name__)


class SegmentationEngine:
    """
    Folds the unsegmented tail of a conversation into a segment once it
    reaches the threshold, then backfills the segment summary and embeds it.

    Summary and embedding are best-effort: a segment without a summary is
    still valid and is skipped by the selectors.
    """

    def __init__(
        self,
        store,
        summarizer: Optional[SegmentSummarizer] = None,
        vectors=None,
        threshold: int = 20
    ):
        self.store = store
        self.summarizer = summarizer or SegmentSummarizer()
        self.vectors = vectors
        self.threshold = threshold

    async def check_and_segment(self, chat_id: str) -> Optional[ConversationSegment]:
        segment = await self.store.append_segment_if_due(chat_id, self.threshold)
        if segment is None:
            return None

        try:
            members = await self.store.get_segment_messages(segment)
            segment.summary = self.summarizer.summarize(members)
            await self.store.update_segment_summary(segment.id, segment.summary)
        except Exception as e:
            logger.warning(f"Summary backfill failed for segment {segment.id}: {e}")
            return segment

        if self.vectors is not None and self.vectors.initialized:
            try:
                await self.vectors.add_segment_summary(chat_id, segment.id, segment.summary)
            except Exception as e:
                logger.warning(f"Could not embed summary of segment {segment.id}: {e}")

        return segment
