"""Demo entry point for the context engine."""

import asyncio
import logging
import sys

from contextengine.core.config import load_config, validate_config
from contextengine.core.context_engine import ContextTimeoutError, build_context_engine
from contextengine.core.interfaces import FactType, Message
from contextengine.utils.logging_config import setup_logging
from contextengine.utils.validation import ConfigurationError

logger = logging.getLogger(__name__)

DEMO_CHAT = "demo-chat"

DEMO_MESSAGES = [
    ("user", "Hi! I'm planning a trip to Lisbon in May."),
    ("assistant", "Nice choice. Do you already have a flight and hotel?"),
    ("user", "Not yet. I prefer small hotels close to the old town."),
    ("assistant", "Alfama and Baixa both have small hotels within walking distance."),
    ("user", "We decided to stay five nights. Remember that the budget is $1500."),
    ("assistant", "Noted: five nights, $1500 total. I'll keep that in mind."),
    ("user", "Can you also suggest a day trip?"),
    ("assistant", "Sintra is an easy train ride and worth a full day."),
]


async def main():
    """Load a short conversation and print the assembled context window."""
    config = load_config()

    setup_logging(config.debug_mode, config.log_level)

    errors = validate_config(config)
    if errors:
        logger.error("Configuration errors:")
        for error in errors:
            logger.error(f"  - {error}")
        sys.exit(1)

    logger.info("=" * 60)
    logger.info("Context Engine Demo")
    logger.info("=" * 60)

    engine = None
    try:
        engine = await build_context_engine(config)
        await engine.create_conversation(DEMO_CHAT, title="Lisbon trip")

        stats = await engine.get_conversation_stats(DEMO_CHAT)
        next_id = (stats or {}).get("total_messages", 0) + 1
        for offset, (role, content) in enumerate(DEMO_MESSAGES):
            await engine.add_message(DEMO_CHAT, next_id + offset, Message(role=role, content=content))

        await engine.add_key_fact(DEMO_CHAT, "Trip budget is $1500", FactType.FACT, importance=0.9)

        window = await engine.get_optimized_context(DEMO_CHAT, "what hotel area did I prefer?", timeout=10)

        logger.info(
            f"Window: strategy={window.strategy} tokens={window.total_tokens} "
            f"ratio={window.compression_ratio:.2f}"
        )
        for msg in window.recent_messages:
            logger.info(f"  [recent] {msg.role}: {msg.content}")
        for msg in window.relevant_history:
            logger.info(f"  [relevant {msg.metadata.get('similarity')}] {msg.role}: {msg.content}")
        for segment in window.summaries:
            logger.info(f"  [summary {segment.tier.value}] {segment.summary}")
        for fact in window.key_facts:
            logger.info(f"  [fact {fact.fact_type.value}] {fact.fact_text}")

        logger.info(f"Cache stats: {engine.get_cache_stats()['context']}")

    except ConfigurationError as e:
        logger.error(str(e))
        sys.exit(1)
    except ContextTimeoutError as e:
        logger.error(f"Context assembly timed out: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if engine:
            await engine.close()
        logger.info("Shutdown complete")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown complete.")
