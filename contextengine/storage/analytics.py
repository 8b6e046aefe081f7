"""Best-effort operation log and derived metrics."""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import case, delete, func, select

from contextengine.storage.database import Database
from contextengine.storage.models import AnalyticsRow, ConversationRow, utc_now

logger = logging.getLogger(__name__)


class ContextAnalytics:
    """Records one row per context build and aggregates them on demand."""

    def __init__(self, database: Database, retention_days: int = 30):
        self.db = database
        self.retention_days = retention_days

    async def record_operation(
        self,
        chat_id: str,
        operation_type: str,
        output_tokens: int,
        compression_ratio: Optional[float] = None,
        processing_time_ms: Optional[int] = None,
        cache_hit: bool = False,
        strategy: Optional[str] = None
    ) -> None:
        async with self.db.transaction() as session:
            session.add(AnalyticsRow(
                chat_id=chat_id,
                operation_type=operation_type,
                output_tokens=output_tokens,
                compression_ratio=compression_ratio,
                processing_time_ms=processing_time_ms,
                cache_hit=cache_hit,
                strategy=strategy,
                created_at=utc_now(),
            ))

    async def get_conversation_metrics(self, chat_id: str) -> Dict[str, Any]:
        async with self.db.session() as session:
            row = (await session.execute(
                select(
                    func.count(AnalyticsRow.id),
                    func.avg(AnalyticsRow.compression_ratio),
                    func.avg(AnalyticsRow.processing_time_ms),
                    func.sum(case((AnalyticsRow.cache_hit.is_(True), 1), else_=0)),
                ).where(AnalyticsRow.chat_id == chat_id)
            )).one()

        operations, avg_ratio, avg_time, cache_hits = row
        operations = operations or 0
        cache_hits = cache_hits or 0
        return {
            "operations": operations,
            "average_compression_ratio": float(avg_ratio) if avg_ratio is not None else None,
            "average_processing_time_ms": float(avg_time) if avg_time is not None else None,
            "cache_hit_rate": cache_hits / operations if operations else 0.0,
        }

    async def get_system_metrics(self) -> Dict[str, Any]:
        async with self.db.session() as session:
            conversations, messages, tokens = (await session.execute(
                select(
                    func.count(ConversationRow.chat_id),
                    func.coalesce(func.sum(ConversationRow.total_messages), 0),
                    func.coalesce(func.sum(ConversationRow.total_tokens), 0),
                )
            )).one()
            operations, avg_ratio = (await session.execute(
                select(func.count(AnalyticsRow.id), func.avg(AnalyticsRow.compression_ratio))
            )).one()
            strategies = (await session.execute(
                select(AnalyticsRow.strategy, func.count(AnalyticsRow.id))
                .group_by(AnalyticsRow.strategy)
            )).all()

        return {
            "conversations": conversations,
            "messages": messages,
            "tokens": tokens,
            "operations": operations,
            "average_compression_ratio": float(avg_ratio) if avg_ratio is not None else None,
            "strategies": {strategy or "unknown": count for strategy, count in strategies},
        }

    async def cleanup_old_data(self, retention_days: Optional[int] = None) -> int:
        """Delete analytics rows older than the retention window."""
        days = retention_days if retention_days is not None else self.retention_days
        cutoff = utc_now() - timedelta(days=days)
        async with self.db.transaction() as session:
            result = await session.execute(
                delete(AnalyticsRow).where(AnalyticsRow.created_at < cutoff)
            )
            removed = result.rowcount or 0
        if removed:
            logger.info(f"Removed {removed} analytics rows older than {days} days")
        return removed
